from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


TERMINAL_STATUSES = frozenset(s for s in TransactionStatus if s.is_terminal)


class PlanData(BaseModel):
    plan_type: str
    is_vip: bool = False


class PixCode(BaseModel):
    code: Optional[str] = None
    qr_code_base64: Optional[str] = None


class Transaction(BaseModel):
    """A PIX payment transaction as held by the store."""

    id: str
    provider_payment_id: Optional[str] = None
    preference_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    amount: int = Field(..., gt=0, description="Amount in centavos")
    plan_data: PlanData
    user_email: str
    pix_code: Optional[PixCode] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    paid_at: Optional[datetime] = None
    raw_provider_status: Optional[str] = None
    status_detail: Optional[str] = None
    last_source: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class TransactionFilter(BaseModel):
    status: Optional[TransactionStatus] = None
    user_email: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    expires_before: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)


class CreatePreferenceRequest(BaseModel):
    # Optional so that missing fields surface as 400 from the creator, not 422
    planType: Optional[str] = None
    isVip: Any = False
    userEmail: Optional[str] = None


class CreatePreferenceResponse(BaseModel):
    success: bool = True
    preference_id: str
    qr_code: Optional[str]
    qr_code_base64: Optional[str]
    transaction_id: str
    amount: int
    expires_at: datetime


class TransactionStatusResponse(BaseModel):
    transaction_id: str
    status: TransactionStatus
    amount: int
    plan_type: str
    is_vip: bool
    created_at: datetime
    expires_at: datetime
    updated_at: datetime

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "TransactionStatusResponse":
        return cls(
            transaction_id=txn.id,
            status=txn.status,
            amount=txn.amount,
            plan_type=txn.plan_data.plan_type,
            is_vip=txn.plan_data.is_vip,
            created_at=txn.created_at,
            expires_at=txn.expires_at,
            updated_at=txn.updated_at,
        )


class TransactionEvent(BaseModel):
    transaction_id: str
    source: str
    requested_status: TransactionStatus
    previous_status: TransactionStatus
    resulting_status: TransactionStatus
    outcome: str
    raw_provider_status: Optional[str] = None
    created_at: datetime


class TransactionStats(BaseModel):
    total: int
    pending: int
    paid: int
    failed: int
    cancelled: int
    expired: int
    last_24_hours: int
    total_amount: int


class CleanupRequest(BaseModel):
    older_than_days: Optional[int] = Field(default=None, gt=0)
