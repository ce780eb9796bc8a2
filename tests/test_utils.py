from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.utils.currency import cents_to_reais, reais_to_cents
from app.utils.date_utils import ensure_utc, seconds_until


class TestCurrencyUtils:
    def test_cents_to_reais(self):
        assert cents_to_reais(6890) == Decimal("68.90")

    def test_cents_to_reais_vip_yearly(self):
        assert cents_to_reais(75855) == Decimal("758.55")

    def test_reais_to_cents_from_float(self):
        assert reais_to_cents(68.9) == 6890

    def test_reais_to_cents_rounds_half_up(self):
        assert reais_to_cents("638.555") == 63856

    def test_reais_to_cents_decimal(self):
        assert reais_to_cents(Decimal("0.01")) == 1


class TestDateUtils:
    def test_ensure_utc_naive(self):
        result = ensure_utc(datetime(2024, 1, 15, 10, 0))
        assert result.tzinfo == timezone.utc
        assert result.hour == 10

    def test_ensure_utc_converts_offset(self):
        brt = timezone(timedelta(hours=-3))
        result = ensure_utc(datetime(2024, 1, 15, 10, 0, tzinfo=brt))
        assert result.hour == 13

    def test_ensure_utc_none(self):
        assert ensure_utc(None) is None

    def test_seconds_until_future_and_past(self):
        now = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert seconds_until(now + timedelta(minutes=30), now) == 1800
        assert seconds_until(now - timedelta(seconds=5), now) == -5

    def test_seconds_until_mixed_naive_aware(self):
        now = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert seconds_until(datetime(2024, 1, 15, 10, 1), now) == 60
