"""Durable keyed storage for PIX transactions.

One flat row per transaction, keyed by ``id``. Every write happens inside a
single database transaction, so a failed write leaves the previous state
visible to readers. ``update`` additionally serializes writers per id so a
webhook and a poll hitting the same transaction cannot interleave their
read-mutate-write cycles.
"""
from __future__ import annotations

import asyncio
import weakref
from typing import Callable, Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.log import get_logger
from app.models import TransactionRecord, TransactionEventRecord
from app.schemas.transaction import (
    PixCode,
    PlanData,
    Transaction,
    TransactionEvent,
    TransactionFilter,
    TransactionStatus,
)
from app.services.exceptions import (
    DuplicateTransactionError,
    ImmutableFieldError,
    PersistenceError,
    TransactionNotFoundError,
)
from app.utils.date_utils import ensure_utc

Mutator = Callable[[Transaction], Optional[Transaction]]

IMMUTABLE_FIELDS = ("id", "amount", "plan_data", "user_email", "created_at")


def record_to_transaction(row: TransactionRecord) -> Transaction:
    pix_code = None
    if row.pix_code or row.pix_qr_code_base64:
        pix_code = PixCode(code=row.pix_code, qr_code_base64=row.pix_qr_code_base64)
    return Transaction(
        id=row.id,
        provider_payment_id=row.provider_payment_id,
        preference_id=row.preference_id,
        status=TransactionStatus(row.status),
        amount=row.amount,
        plan_data=PlanData(plan_type=row.plan_type, is_vip=row.is_vip),
        user_email=row.user_email,
        pix_code=pix_code,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        expires_at=ensure_utc(row.expires_at),
        paid_at=ensure_utc(row.paid_at),
        raw_provider_status=row.raw_provider_status,
        status_detail=row.status_detail,
        last_source=row.last_source,
    )


def _copy_into(row: TransactionRecord, txn: Transaction) -> None:
    row.provider_payment_id = txn.provider_payment_id
    row.preference_id = txn.preference_id
    row.status = txn.status.value
    row.amount = txn.amount
    row.plan_type = txn.plan_data.plan_type
    row.is_vip = txn.plan_data.is_vip
    row.user_email = txn.user_email
    row.pix_code = txn.pix_code.code if txn.pix_code else None
    row.pix_qr_code_base64 = txn.pix_code.qr_code_base64 if txn.pix_code else None
    row.created_at = txn.created_at
    row.updated_at = txn.updated_at
    row.expires_at = txn.expires_at
    row.paid_at = txn.paid_at
    row.raw_provider_status = txn.raw_provider_status
    row.status_detail = txn.status_detail
    row.last_source = txn.last_source


class TransactionStore:
    """Keyed transaction store over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._logger = get_logger("transaction_store")

    def _lock_for(self, transaction_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the event loop
        lock = self._locks.get(transaction_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[transaction_id] = lock
        return lock

    async def create(self, txn: Transaction) -> Transaction:
        """Insert a new transaction. Raises DuplicateTransactionError if the id exists."""
        async with self._lock_for(txn.id):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        existing = await session.get(TransactionRecord, txn.id)
                        if existing is not None:
                            raise DuplicateTransactionError(
                                f"Transaction {txn.id} already exists", transaction_id=txn.id
                            )
                        row = TransactionRecord(id=txn.id)
                        _copy_into(row, txn)
                        session.add(row)
            except IntegrityError as e:
                raise DuplicateTransactionError(
                    f"Transaction {txn.id} already exists", transaction_id=txn.id
                ) from e
            except SQLAlchemyError as e:
                self._logger.error("create_failed", transaction_id=txn.id, error=str(e))
                raise PersistenceError(f"Could not store transaction {txn.id}") from e

        self._logger.info("transaction_created", transaction_id=txn.id, amount=txn.amount)
        return txn

    async def get(self, transaction_id: str) -> Transaction:
        async with self._session_factory() as session:
            row = await session.get(TransactionRecord, transaction_id)
            if row is None:
                raise TransactionNotFoundError(
                    f"Transaction {transaction_id} not found", transaction_id=transaction_id
                )
            return record_to_transaction(row)

    async def find_by_provider_payment_id(self, provider_payment_id: str) -> Transaction:
        """Find by provider payment id, falling back to our own id (the external reference)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(TransactionRecord).where(
                    or_(
                        TransactionRecord.provider_payment_id == provider_payment_id,
                        TransactionRecord.id == provider_payment_id,
                    )
                )
            )
            rows = result.scalars().all()

        if not rows:
            raise TransactionNotFoundError(
                f"No transaction for payment {provider_payment_id}",
                provider_payment_id=provider_payment_id,
            )
        # A provider id match wins over an id match
        rows = sorted(rows, key=lambda r: r.provider_payment_id != provider_payment_id)
        return record_to_transaction(rows[0])

    async def update(self, transaction_id: str, mutator: Mutator) -> Transaction:
        """Apply mutator to the current record under the per-id lock.

        The mutator returns the next record, or the current one (or None) to
        leave the row untouched.
        """
        async with self._lock_for(transaction_id):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(TransactionRecord)
                            .where(TransactionRecord.id == transaction_id)
                            .with_for_update()
                        )
                        row = result.scalar_one_or_none()
                        if row is None:
                            raise TransactionNotFoundError(
                                f"Transaction {transaction_id} not found",
                                transaction_id=transaction_id,
                            )

                        current = record_to_transaction(row)
                        nxt = mutator(current)
                        if nxt is None or nxt == current:
                            return current

                        for field in IMMUTABLE_FIELDS:
                            if getattr(nxt, field) != getattr(current, field):
                                raise ImmutableFieldError(
                                    f"{field} cannot change after creation",
                                    transaction_id=transaction_id,
                                    field=field,
                                )
                        _copy_into(row, nxt)
            except SQLAlchemyError as e:
                self._logger.error("update_failed", transaction_id=transaction_id, error=str(e))
                raise PersistenceError(f"Could not update transaction {transaction_id}") from e

        return nxt

    async def list(self, filters: Optional[TransactionFilter] = None) -> list[Transaction]:
        filters = filters or TransactionFilter()
        stmt = select(TransactionRecord)

        if filters.status:
            stmt = stmt.where(TransactionRecord.status == filters.status.value)
        if filters.user_email:
            stmt = stmt.where(TransactionRecord.user_email == filters.user_email)
        if filters.created_after:
            stmt = stmt.where(TransactionRecord.created_at >= filters.created_after)
        if filters.created_before:
            stmt = stmt.where(TransactionRecord.created_at < filters.created_before)
        if filters.expires_before:
            stmt = stmt.where(TransactionRecord.expires_at < filters.expires_before)

        stmt = stmt.order_by(TransactionRecord.created_at.desc())
        if filters.limit:
            stmt = stmt.limit(filters.limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [record_to_transaction(row) for row in result.scalars().all()]

    async def purge(self, transaction_ids: list[str]) -> int:
        """Delete the given transactions. Used by the retention sweep only."""
        if not transaction_ids:
            return 0
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(TransactionRecord).where(TransactionRecord.id.in_(transaction_ids))
                    )
        except SQLAlchemyError as e:
            raise PersistenceError("Could not purge transactions") from e
        return result.rowcount or 0

    async def record_event(self, event: TransactionEvent) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        TransactionEventRecord(
                            transaction_id=event.transaction_id,
                            source=event.source,
                            requested_status=event.requested_status.value,
                            previous_status=event.previous_status.value,
                            resulting_status=event.resulting_status.value,
                            outcome=event.outcome,
                            raw_provider_status=event.raw_provider_status,
                            created_at=event.created_at,
                        )
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not record event for {event.transaction_id}") from e

    async def list_events(self, transaction_id: str) -> list[TransactionEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TransactionEventRecord)
                .where(TransactionEventRecord.transaction_id == transaction_id)
                .order_by(TransactionEventRecord.id)
            )
            return [
                TransactionEvent(
                    transaction_id=row.transaction_id,
                    source=row.source,
                    requested_status=TransactionStatus(row.requested_status),
                    previous_status=TransactionStatus(row.previous_status),
                    resulting_status=TransactionStatus(row.resulting_status),
                    outcome=row.outcome,
                    raw_provider_status=row.raw_provider_status,
                    created_at=ensure_utc(row.created_at),
                )
                for row in result.scalars().all()
            ]
