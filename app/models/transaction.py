from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class TransactionRecord(Base):
    """Flat record per PIX transaction, keyed by our external reference."""

    __tablename__ = "pix_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    preference_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(20), index=True)  # pending | paid | failed | cancelled | expired
    amount: Mapped[int] = mapped_column(Integer)  # centavos
    plan_type: Mapped[str] = mapped_column(String(20))
    is_vip: Mapped[bool] = mapped_column(Boolean, default=False)
    user_email: Mapped[str] = mapped_column(String(255), index=True)
    pix_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pix_qr_code_base64: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_provider_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status_detail: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
