from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.log import get_logger
from app.models import TransactionRecord
from app.schemas.transaction import (
    TERMINAL_STATUSES,
    TransactionFilter,
    TransactionStats,
    TransactionStatus,
)
from app.services.reconciliation import ReconciliationEngine, TransitionMetadata, TransitionSource
from app.services.exceptions import TransactionNotFoundError
from app.utils.date_utils import utcnow


class ReportingService:
    """Transaction statistics and housekeeping sweeps."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: ReconciliationEngine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.engine = engine
        self.store = engine.store
        self._clock = clock
        self._logger = get_logger("reporting_service")

    async def get_transaction_stats(self) -> TransactionStats:
        """Counts per status, last 24 hours, and the paid total in centavos."""
        since = self._clock() - timedelta(hours=24)

        async with self._session_factory() as session:
            result = await session.execute(
                select(TransactionRecord.status, func.count(TransactionRecord.id))
                .group_by(TransactionRecord.status)
            )
            counts = {status: count for status, count in result.all()}

            recent = await session.scalar(
                select(func.count(TransactionRecord.id))
                .where(TransactionRecord.created_at >= since)
            )
            paid_total = await session.scalar(
                select(
                    func.coalesce(
                        func.sum(
                            case(
                                (TransactionRecord.status == TransactionStatus.PAID.value,
                                 TransactionRecord.amount),
                                else_=0,
                            )
                        ),
                        0,
                    )
                )
            )

        return TransactionStats(
            total=sum(counts.values()),
            pending=counts.get(TransactionStatus.PENDING.value, 0),
            paid=counts.get(TransactionStatus.PAID.value, 0),
            failed=counts.get(TransactionStatus.FAILED.value, 0),
            cancelled=counts.get(TransactionStatus.CANCELLED.value, 0),
            expired=counts.get(TransactionStatus.EXPIRED.value, 0),
            last_24_hours=recent or 0,
            total_amount=int(paid_total or 0),
        )

    async def clean_old_transactions(self, older_than_days: int = 90) -> int:
        """Remove terminal transactions created before the cutoff.

        Pending transactions are never removed, however old.
        """
        cutoff = self._clock() - timedelta(days=older_than_days)
        old = await self.store.list(TransactionFilter(created_before=cutoff))
        ids = [txn.id for txn in old if txn.status in TERMINAL_STATUSES]

        removed = await self.store.purge(ids)
        if removed:
            self._logger.info("old_transactions_removed", count=removed, older_than_days=older_than_days)
        return removed

    async def expire_overdue(self) -> int:
        """Mark every pending transaction past its expiry as expired."""
        now = self._clock()
        overdue = await self.store.list(
            TransactionFilter(status=TransactionStatus.PENDING, expires_before=now)
        )

        expired = 0
        for txn in overdue:
            try:
                result = await self.engine.apply_status(
                    txn.id,
                    TransactionStatus.EXPIRED,
                    TransitionMetadata(source=TransitionSource.SWEEP),
                )
            except TransactionNotFoundError:
                # purged between the listing and the update
                continue
            if result.applied:
                expired += 1

        if expired:
            self._logger.info("overdue_transactions_expired", count=expired)
        return expired
