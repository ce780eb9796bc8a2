import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from app.config import PLAN_PRICES
from app.log import get_logger
from app.schemas.provider import PreferenceRequest
from app.schemas.transaction import PixCode, PlanData, Transaction, TransactionStatus
from app.services.exceptions import (
    InvalidFieldError,
    InvalidPlanError,
    MissingFieldError,
    OrphanedUpstreamIntentError,
    PixError,
)
from app.services.provider import PaymentProvider
from app.services.store import TransactionStore
from app.utils.date_utils import utcnow

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class PreferenceResult:
    preference_id: str
    transaction_id: str
    amount: int
    expires_at: datetime
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    init_point: Optional[str] = None


def plan_price(plan_type: str, is_vip: bool) -> int:
    """Price in centavos from the static plan table."""
    plan = PLAN_PRICES[plan_type]
    return plan["base"] + (plan["vip_extra"] if is_vip else 0)


def plan_title(plan_type: str, is_vip: bool) -> str:
    name = PLAN_PRICES[plan_type]["name"]
    return f"{name} VIP" if is_vip else name


def new_external_reference(plan_type: str, is_vip: bool) -> str:
    return f"pix-{plan_type}-{'vip' if is_vip else 'normal'}-{uuid.uuid4().hex[:16]}"


class PaymentIntentCreator:
    """Creates the upstream PIX preference and the local pending transaction."""

    def __init__(
        self,
        store: TransactionStore,
        provider: PaymentProvider,
        expiry_minutes: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.provider = provider
        self.expiry = timedelta(minutes=expiry_minutes)
        self._clock = clock
        self._logger = get_logger("payment_intent_creator")

    def validate(self, plan_type: Any, is_vip: Any, user_email: Any) -> None:
        missing = [
            name for name, value in (("planType", plan_type), ("userEmail", user_email))
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            raise MissingFieldError(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )
        if not isinstance(plan_type, str) or plan_type not in PLAN_PRICES:
            raise InvalidPlanError(
                f"Invalid planType. Must be one of: {', '.join(PLAN_PRICES)}", plan_type=plan_type
            )
        if not isinstance(user_email, str) or not EMAIL_RE.match(user_email.strip()):
            raise InvalidFieldError("Invalid email format", field="userEmail")
        if not isinstance(is_vip, bool):
            raise InvalidFieldError("isVip must be a boolean value", field="isVip")

    async def create(self, plan_type: Any, is_vip: Any, user_email: Any) -> PreferenceResult:
        self.validate(plan_type, is_vip, user_email)
        user_email = user_email.strip()

        amount = plan_price(plan_type, is_vip)
        transaction_id = new_external_reference(plan_type, is_vip)
        now = self._clock()
        expires_at = now + self.expiry

        log = self._logger.bind(transaction_id=transaction_id, plan_type=plan_type, is_vip=is_vip)
        log.info("preference_requested", amount=amount)

        # ProviderError propagates untouched: nothing local exists yet
        preference = await self.provider.create_preference(
            PreferenceRequest(
                external_reference=transaction_id,
                title=plan_title(plan_type, is_vip),
                amount=amount,
                payer_email=user_email,
                expires_at=expires_at,
            )
        )

        pix_code = None
        if preference.qr_code or preference.qr_code_base64:
            pix_code = PixCode(code=preference.qr_code, qr_code_base64=preference.qr_code_base64)

        transaction = Transaction(
            id=transaction_id,
            preference_id=preference.id,
            status=TransactionStatus.PENDING,
            amount=amount,
            plan_data=PlanData(plan_type=plan_type, is_vip=is_vip),
            user_email=user_email,
            pix_code=pix_code,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

        try:
            await self.store.create(transaction)
        except PixError as e:
            log.critical(
                "orphaned_upstream_intent",
                preference_id=preference.id,
                error=str(e),
            )
            raise OrphanedUpstreamIntentError(
                "Payment preference was created upstream but could not be stored",
                preference_id=preference.id,
                transaction_id=transaction_id,
            ) from e

        log.info("preference_created", preference_id=preference.id)
        return PreferenceResult(
            preference_id=preference.id,
            transaction_id=transaction_id,
            amount=amount,
            expires_at=expires_at,
            qr_code=preference.qr_code,
            qr_code_base64=preference.qr_code_base64,
            init_point=preference.init_point,
        )
