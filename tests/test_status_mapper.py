import pytest

from app.schemas.transaction import TransactionStatus
from app.services.status_mapper import PROVIDER_STATUS_MAP, map_provider_status


class TestMapProviderStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("approved", TransactionStatus.PAID),
            ("pending", TransactionStatus.PENDING),
            ("in_process", TransactionStatus.PENDING),
            ("cancelled", TransactionStatus.CANCELLED),
            ("rejected", TransactionStatus.FAILED),
            ("refunded", TransactionStatus.CANCELLED),
            ("charged_back", TransactionStatus.CANCELLED),
        ],
    )
    def test_known_statuses(self, raw, expected):
        assert map_provider_status(raw) == expected

    def test_unknown_status_stays_pending(self):
        assert map_provider_status("authorized_but_weird") == TransactionStatus.PENDING

    def test_none_and_non_strings_stay_pending(self):
        assert map_provider_status(None) == TransactionStatus.PENDING
        assert map_provider_status(42) == TransactionStatus.PENDING
        assert map_provider_status({"status": "approved"}) == TransactionStatus.PENDING

    def test_case_and_whitespace_insensitive(self):
        assert map_provider_status(" Approved ") == TransactionStatus.PAID

    def test_table_only_targets_internal_statuses(self):
        assert set(PROVIDER_STATUS_MAP.values()) <= set(TransactionStatus)
