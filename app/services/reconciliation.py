"""Transaction state machine.

``pending`` is the only non-terminal state. From it a transaction may move to
``paid``, ``failed``, ``cancelled`` or ``expired``; terminal states have no
outgoing transitions. ``ReconciliationEngine.apply_status`` is the single
entry point used by both the webhook receiver and the status poller.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from app.log import get_logger
from app.schemas.transaction import Transaction, TransactionEvent, TransactionStatus
from app.services.exceptions import PersistenceError
from app.services.store import TransactionStore
from app.utils.date_utils import utcnow


class TransitionSource(str, Enum):
    WEBHOOK = "webhook"
    POLLER = "poller"
    SWEEP = "sweep"


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    METADATA_UPDATED = "metadata_updated"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass
class TransitionMetadata:
    """Who asked for a transition and what the provider actually said."""
    source: TransitionSource
    raw_status: Optional[str] = None
    status_detail: Optional[str] = None
    provider_payment_id: Optional[str] = None


@dataclass
class ApplyResult:
    applied: bool
    outcome: TransitionOutcome
    transaction: Transaction
    previous_status: TransactionStatus


class ReconciliationEngine:
    """Applies status transitions with idempotency and terminal-state protection."""

    def __init__(self, store: TransactionStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock
        self._logger = get_logger("reconciliation_engine")

    async def apply_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        metadata: TransitionMetadata,
    ) -> ApplyResult:
        """Drive a transaction toward ``status``.

        Raises TransactionNotFoundError for unknown ids; no placeholder
        record is ever created.
        """
        requested = TransactionStatus(status)
        decided: dict = {}

        def mutate(current: Transaction) -> Transaction:
            decided["previous"] = current.status

            if current.is_terminal:
                if requested == current.status:
                    decided["outcome"] = TransitionOutcome.DUPLICATE
                else:
                    decided["outcome"] = TransitionOutcome.REJECTED
                return current

            now = self._clock()
            updates = {
                "updated_at": now,
                "last_source": metadata.source.value,
            }
            if metadata.raw_status is not None:
                updates["raw_provider_status"] = metadata.raw_status
            if metadata.status_detail is not None:
                updates["status_detail"] = metadata.status_detail
            if metadata.provider_payment_id and not current.provider_payment_id:
                updates["provider_payment_id"] = metadata.provider_payment_id

            if requested == TransactionStatus.PENDING:
                decided["outcome"] = TransitionOutcome.METADATA_UPDATED
            else:
                decided["outcome"] = TransitionOutcome.APPLIED
                updates["status"] = requested
                if requested == TransactionStatus.PAID:
                    updates["paid_at"] = now

            return current.model_copy(update=updates)

        transaction = await self.store.update(transaction_id, mutate)
        outcome: TransitionOutcome = decided["outcome"]
        previous: TransactionStatus = decided["previous"]

        log = self._logger.bind(
            transaction_id=transaction_id,
            source=metadata.source.value,
            raw_status=metadata.raw_status,
            previous_status=previous.value,
            requested_status=requested.value,
        )
        if outcome == TransitionOutcome.APPLIED:
            log.info("transition_applied", status=transaction.status.value)
        elif outcome == TransitionOutcome.METADATA_UPDATED:
            log.debug("pending_metadata_updated")
        elif outcome == TransitionOutcome.DUPLICATE:
            log.info("duplicate_terminal_status")
        else:
            # A terminal status is money already reconciled; never overwrite it
            log.error("terminal_status_conflict", current_status=transaction.status.value)

        await self._record(transaction, requested, previous, outcome, metadata)

        return ApplyResult(
            applied=outcome == TransitionOutcome.APPLIED,
            outcome=outcome,
            transaction=transaction,
            previous_status=previous,
        )

    async def _record(
        self,
        transaction: Transaction,
        requested: TransactionStatus,
        previous: TransactionStatus,
        outcome: TransitionOutcome,
        metadata: TransitionMetadata,
    ) -> None:
        event = TransactionEvent(
            transaction_id=transaction.id,
            source=metadata.source.value,
            requested_status=requested,
            previous_status=previous,
            resulting_status=transaction.status,
            outcome=outcome.value,
            raw_provider_status=metadata.raw_status,
            created_at=self._clock(),
        )
        try:
            await self.store.record_event(event)
        except PersistenceError as e:
            # The transition itself is already durable
            self._logger.error("audit_event_lost", transaction_id=transaction.id, error=str(e))
