from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")


def cents_to_reais(amount: int) -> Decimal:
    """Convert an amount in centavos to reais."""
    return (Decimal(int(amount)) / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)


def reais_to_cents(amount: Decimal | float | str) -> int:
    """Convert a reais amount (as reported by the provider) to centavos."""
    value = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return int(value * 100)
