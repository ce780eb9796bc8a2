from typing import Any

from app.schemas.transaction import TransactionStatus

# Mercado Pago payment status -> internal status
PROVIDER_STATUS_MAP = {
    "approved": TransactionStatus.PAID,
    "pending": TransactionStatus.PENDING,
    "in_process": TransactionStatus.PENDING,
    "cancelled": TransactionStatus.CANCELLED,
    "rejected": TransactionStatus.FAILED,
    "refunded": TransactionStatus.CANCELLED,
    "charged_back": TransactionStatus.CANCELLED,
}


def map_provider_status(provider_status: Any) -> TransactionStatus:
    """Translate a provider status into an internal status.

    Unrecognized values (including None and non-strings) map to PENDING so an
    unfamiliar provider code can only delay convergence, never freeze a
    transaction in the wrong terminal state.
    """
    if not isinstance(provider_status, str):
        return TransactionStatus.PENDING
    return PROVIDER_STATUS_MAP.get(provider_status.strip().lower(), TransactionStatus.PENDING)
