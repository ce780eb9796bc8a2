import asyncio

import pytest

from app.schemas.transaction import TransactionStatus
from app.services.exceptions import TransactionNotFoundError
from app.services.reconciliation import TransitionMetadata, TransitionOutcome, TransitionSource

from tests.conftest import make_transaction

WEBHOOK = TransitionMetadata(source=TransitionSource.WEBHOOK, raw_status="approved", provider_payment_id="mp-1")
POLLER = TransitionMetadata(source=TransitionSource.POLLER)


@pytest.mark.anyio
async def test_pending_to_paid(store, engine, clock):
    txn = await store.create(make_transaction())
    clock.advance(minutes=3)

    result = await engine.apply_status(txn.id, TransactionStatus.PAID, WEBHOOK)

    assert result.applied
    assert result.outcome == TransitionOutcome.APPLIED
    assert result.previous_status == TransactionStatus.PENDING
    assert result.transaction.status == TransactionStatus.PAID
    assert result.transaction.paid_at == clock.now
    assert result.transaction.updated_at == clock.now
    assert result.transaction.provider_payment_id == "mp-1"
    assert result.transaction.raw_provider_status == "approved"
    assert result.transaction.last_source == "webhook"

    stored = await store.get(txn.id)
    assert stored == result.transaction


@pytest.mark.anyio
@pytest.mark.parametrize(
    "target",
    [TransactionStatus.FAILED, TransactionStatus.CANCELLED, TransactionStatus.EXPIRED],
)
async def test_pending_to_other_terminal_states(store, engine, target):
    txn = await store.create(make_transaction())

    result = await engine.apply_status(txn.id, target, POLLER)

    assert result.applied
    assert result.transaction.status == target
    assert result.transaction.paid_at is None


@pytest.mark.anyio
async def test_duplicate_terminal_status_is_noop(store, engine, clock):
    txn = await store.create(make_transaction())
    first = await engine.apply_status(txn.id, TransactionStatus.PAID, WEBHOOK)
    clock.advance(minutes=1)

    again = await engine.apply_status(txn.id, TransactionStatus.PAID, POLLER)

    assert not again.applied
    assert again.outcome == TransitionOutcome.DUPLICATE
    assert again.transaction == first.transaction


@pytest.mark.anyio
async def test_terminal_status_never_overwritten(store, engine):
    txn = await store.create(make_transaction())
    await engine.apply_status(txn.id, TransactionStatus.PAID, WEBHOOK)

    for status in (TransactionStatus.EXPIRED, TransactionStatus.FAILED, TransactionStatus.PENDING):
        result = await engine.apply_status(txn.id, status, POLLER)
        assert result.outcome == TransitionOutcome.REJECTED
        assert result.transaction.status == TransactionStatus.PAID

    assert (await store.get(txn.id)).status == TransactionStatus.PAID


@pytest.mark.anyio
async def test_pending_request_only_refreshes_metadata(store, engine, clock):
    txn = await store.create(make_transaction())
    clock.advance(seconds=10)

    result = await engine.apply_status(
        txn.id,
        TransactionStatus.PENDING,
        TransitionMetadata(source=TransitionSource.POLLER, raw_status="in_process", status_detail="pending_waiting_transfer"),
    )

    assert not result.applied
    assert result.outcome == TransitionOutcome.METADATA_UPDATED
    assert result.transaction.status == TransactionStatus.PENDING
    assert result.transaction.raw_provider_status == "in_process"
    assert result.transaction.status_detail == "pending_waiting_transfer"
    assert result.transaction.updated_at == clock.now


@pytest.mark.anyio
async def test_provider_payment_id_not_overwritten(store, engine):
    txn = await store.create(make_transaction(provider_payment_id="mp-original"))

    result = await engine.apply_status(
        txn.id,
        TransactionStatus.PAID,
        TransitionMetadata(source=TransitionSource.WEBHOOK, provider_payment_id="mp-other"),
    )
    assert result.transaction.provider_payment_id == "mp-original"


@pytest.mark.anyio
async def test_unknown_transaction(engine):
    with pytest.raises(TransactionNotFoundError):
        await engine.apply_status("ghost", TransactionStatus.PAID, WEBHOOK)


@pytest.mark.anyio
async def test_concurrent_conflicting_updates_converge(store, engine):
    txn = await store.create(make_transaction())

    results = await asyncio.gather(
        engine.apply_status(txn.id, TransactionStatus.PAID, WEBHOOK),
        engine.apply_status(txn.id, TransactionStatus.EXPIRED, POLLER),
        engine.apply_status(txn.id, TransactionStatus.PAID, WEBHOOK),
    )

    applied = [r for r in results if r.applied]
    assert len(applied) == 1
    final = (await store.get(txn.id)).status
    assert final == applied[0].transaction.status
    assert all(r.transaction.status == final for r in results)


@pytest.mark.anyio
async def test_every_request_is_audited(store, engine):
    txn = await store.create(make_transaction())
    await engine.apply_status(txn.id, TransactionStatus.PAID, WEBHOOK)
    await engine.apply_status(txn.id, TransactionStatus.EXPIRED, POLLER)

    events = await store.list_events(txn.id)
    assert [e.outcome for e in events] == ["applied", "rejected"]
    assert events[1].requested_status == TransactionStatus.EXPIRED
    assert events[1].resulting_status == TransactionStatus.PAID
    assert events[1].source == "poller"
