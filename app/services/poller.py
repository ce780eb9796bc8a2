"""Periodic status checks for pending transactions.

Used when webhooks are late or never arrive. Polling is a second trigger into
the same ``ReconciliationEngine.apply_status`` path the webhook uses; this
module only decides *when* to ask the provider and when a transaction has
run out of time.
"""
import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from app.log import get_logger
from app.schemas.transaction import Transaction, TransactionStatus
from app.services.exceptions import PixError, ProviderError, TransactionNotFoundError
from app.services.provider import PaymentProvider
from app.services.reconciliation import ReconciliationEngine, TransitionMetadata, TransitionSource
from app.services.status_mapper import map_provider_status
from app.utils.date_utils import seconds_until, utcnow


@dataclass(frozen=True)
class TimeRemaining:
    hours: int
    minutes: int
    seconds: int
    is_expired: bool

    @property
    def total_seconds(self) -> int:
        return self.hours * 3600 + self.minutes * 60 + self.seconds

    @classmethod
    def until(cls, expires_at: datetime, now: datetime) -> "TimeRemaining":
        remaining = int(seconds_until(expires_at, now))
        if remaining <= 0:
            return cls(0, 0, 0, True)
        hours, rest = divmod(remaining, 3600)
        minutes, seconds = divmod(rest, 60)
        return cls(hours, minutes, seconds, False)


Callback = Callable[[Any], Union[None, Awaitable[None]]]


class MonitorHandle:
    """Cancel handle returned by ``StatusPoller.start_monitoring``."""

    def __init__(
        self,
        transaction_id: str,
        on_status_change: Optional[Callback],
        on_time_update: Optional[Callback],
    ):
        self.transaction_id = transaction_id
        self.on_status_change = on_status_change
        self.on_time_update = on_time_update
        self.task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self.task is None or self.task.done()

    def cancel(self) -> None:
        """Stop monitoring. Idempotent; no callback fires after this returns."""
        self._cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait(self) -> None:
        if self.task is None:
            return
        try:
            await self.task
        except asyncio.CancelledError:
            if not self._cancelled:
                raise


class StatusPoller:
    def __init__(
        self,
        engine: ReconciliationEngine,
        provider: PaymentProvider,
        interval: float = 5.0,
        local_expiry: bool = True,
        expiry_grace_seconds: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.store = engine.store
        self.provider = provider
        self.interval = interval
        self.local_expiry = local_expiry
        self.expiry_grace = timedelta(seconds=expiry_grace_seconds)
        self._clock = clock
        self._handles: dict[str, set[MonitorHandle]] = {}
        self._logger = get_logger("status_poller")

    # ------------------------------------------------------------------ #
    # One-shot check
    # ------------------------------------------------------------------ #
    async def check_now(self, transaction_id: str) -> Transaction:
        """Fetch from the provider, map and reconcile; same path as the webhook.

        Terminal transactions are returned as stored without asking the
        provider. Provider failures leave the transaction as it was.
        """
        transaction = await self.store.get(transaction_id)
        if transaction.is_terminal:
            return transaction

        log = self._logger.bind(transaction_id=transaction_id)
        try:
            if transaction.provider_payment_id:
                payment = await self.provider.get_payment(transaction.provider_payment_id)
            else:
                payment = await self.provider.find_payment_by_reference(transaction.id)
        except ProviderError as e:
            log.warning("poll_provider_failed", error=str(e))
            payment = None

        if payment is not None:
            result = await self.engine.apply_status(
                transaction_id,
                map_provider_status(payment.status),
                TransitionMetadata(
                    source=TransitionSource.POLLER,
                    raw_status=payment.status,
                    status_detail=payment.status_detail,
                    provider_payment_id=payment.id,
                ),
            )
            transaction = result.transaction
            if transaction.is_terminal:
                return transaction

        if self.local_expiry and self._clock() >= transaction.expires_at + self.expiry_grace:
            result = await self.engine.apply_status(
                transaction_id,
                TransactionStatus.EXPIRED,
                TransitionMetadata(source=TransitionSource.POLLER),
            )
            if result.applied:
                log.info("expired_locally", expires_at=transaction.expires_at.isoformat())
            transaction = result.transaction

        return transaction

    # ------------------------------------------------------------------ #
    # Continuous monitoring
    # ------------------------------------------------------------------ #
    def start_monitoring(
        self,
        transaction_id: str,
        on_status_change: Optional[Callback] = None,
        on_time_update: Optional[Callback] = None,
    ) -> MonitorHandle:
        """Poll until terminal, expired, unknown id, or cancelled.

        Must be called from a running event loop.
        """
        handle = MonitorHandle(transaction_id, on_status_change, on_time_update)
        self._handles.setdefault(transaction_id, set()).add(handle)
        handle.task = asyncio.get_running_loop().create_task(self._run(handle))
        self._logger.debug("monitoring_started", transaction_id=transaction_id)
        return handle

    def stop_monitoring(self, transaction_id: str) -> None:
        """Cancel every monitor for this transaction. Idempotent."""
        for handle in list(self._handles.get(transaction_id, ())):
            handle.cancel()
        self._handles.pop(transaction_id, None)

    async def shutdown(self) -> None:
        handles = [h for hs in self._handles.values() for h in hs]
        self._handles.clear()
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*(h.wait() for h in handles), return_exceptions=True)

    @property
    def active_count(self) -> int:
        return sum(1 for hs in self._handles.values() for h in hs if not h.done)

    async def _run(self, handle: MonitorHandle) -> None:
        log = self._logger.bind(transaction_id=handle.transaction_id)
        try:
            while not handle.cancelled:
                try:
                    transaction = await self.check_now(handle.transaction_id)
                except TransactionNotFoundError:
                    log.warning("monitoring_unknown_transaction")
                    return
                except PixError as e:
                    # a failed tick is no new information; try again next interval
                    log.warning("poll_tick_failed", error=e.error, message=e.message)
                    await asyncio.sleep(self.interval)
                    continue

                if transaction.is_terminal:
                    await self._emit(handle, handle.on_status_change, transaction)
                    return

                await self._emit(
                    handle,
                    handle.on_time_update,
                    TimeRemaining.until(transaction.expires_at, self._clock()),
                )
                await asyncio.sleep(self.interval)
        finally:
            handles = self._handles.get(handle.transaction_id)
            if handles is not None:
                handles.discard(handle)
                if not handles:
                    self._handles.pop(handle.transaction_id, None)

    async def _emit(self, handle: MonitorHandle, callback: Optional[Callback], value: Any) -> None:
        if callback is None or handle.cancelled:
            return
        try:
            result = callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # consumer bugs must not stop monitoring
            self._logger.exception("monitor_callback_failed", transaction_id=handle.transaction_id)
