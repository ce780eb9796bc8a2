from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from app.database import create_engine, create_session_factory, init_db
from app.schemas.provider import PreferenceRequest, ProviderPayment, ProviderPreference
from app.schemas.transaction import PlanData, Transaction, TransactionStatus
from app.services.exceptions import ProviderError
from app.services.provider import PaymentProvider
from app.services.reconciliation import ReconciliationEngine
from app.services.store import TransactionStore


T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProvider(PaymentProvider):
    """In-memory stand-in for Mercado Pago."""

    def __init__(self):
        self.payments: dict[str, ProviderPayment] = {}
        self.preferences: list[PreferenceRequest] = []
        self.fail_with: Optional[ProviderError] = None
        self.get_calls: list[str] = []
        self.search_calls: list[str] = []
        self.closed = False

    def add_payment(self, payment_id: str, status: str, external_reference: Optional[str] = None,
                    status_detail: Optional[str] = None, amount: Optional[str] = None) -> ProviderPayment:
        payment = ProviderPayment(
            id=payment_id,
            status=status,
            status_detail=status_detail,
            external_reference=external_reference,
            transaction_amount=amount,
        )
        self.payments[payment_id] = payment
        return payment

    async def create_preference(self, request: PreferenceRequest) -> ProviderPreference:
        if self.fail_with is not None:
            raise self.fail_with
        self.preferences.append(request)
        return ProviderPreference(
            id=f"pref-{len(self.preferences)}",
            init_point="https://mercadopago.test/checkout",
            qr_code="00020126580014br.gov.bcb.pix",
            qr_code_base64="iVBORw0KGgo=",
        )

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        self.get_calls.append(payment_id)
        if self.fail_with is not None:
            raise self.fail_with
        if payment_id not in self.payments:
            raise ProviderError(f"payment {payment_id} not found", status=404)
        return self.payments[payment_id]

    async def find_payment_by_reference(self, external_reference: str) -> Optional[ProviderPayment]:
        self.search_calls.append(external_reference)
        if self.fail_with is not None:
            raise self.fail_with
        for payment in reversed(list(self.payments.values())):
            if payment.external_reference == external_reference:
                return payment
        return None

    async def aclose(self) -> None:
        self.closed = True


def make_transaction(
    transaction_id: str = "pix-monthly-normal-abc123",
    status: TransactionStatus = TransactionStatus.PENDING,
    amount: int = 6890,
    created_at: datetime = T0,
    expires_in: timedelta = timedelta(minutes=30),
    **kwargs,
) -> Transaction:
    return Transaction(
        id=transaction_id,
        status=status,
        amount=amount,
        plan_data=kwargs.pop("plan_data", PlanData(plan_type="monthly", is_vip=False)),
        user_email=kwargs.pop("user_email", "cliente@example.com"),
        created_at=created_at,
        updated_at=created_at,
        expires_at=created_at + expires_in,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return TransactionStore(session_factory)


@pytest.fixture
def engine(store, clock):
    return ReconciliationEngine(store, clock=clock)
