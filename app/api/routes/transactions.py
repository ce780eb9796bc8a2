from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_services
from app.schemas.transaction import (
    CleanupRequest,
    Transaction,
    TransactionEvent,
    TransactionFilter,
    TransactionStats,
    TransactionStatus,
)
from app.services.container import PixServices

router = APIRouter()


@router.get("/stats", response_model=TransactionStats)
async def get_stats(services: PixServices = Depends(get_services)):
    return await services.reporting.get_transaction_stats()


@router.get("", response_model=list[Transaction])
async def list_transactions(
    user_email: Optional[str] = Query(None, description="Filter by payer email"),
    status: Optional[TransactionStatus] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000),
    services: PixServices = Depends(get_services),
):
    """Transactions, newest first."""
    return await services.store.list(
        TransactionFilter(user_email=user_email, status=status, limit=limit)
    )


@router.get("/{transaction_id}", response_model=Transaction)
async def get_transaction(
    transaction_id: str,
    services: PixServices = Depends(get_services),
):
    return await services.store.get(transaction_id)


@router.get("/{transaction_id}/events", response_model=list[TransactionEvent])
async def get_transaction_events(
    transaction_id: str,
    services: PixServices = Depends(get_services),
):
    """Audit trail of every status request the engine handled for a transaction."""
    await services.store.get(transaction_id)
    return await services.store.list_events(transaction_id)


@router.post("/cleanup")
async def cleanup_transactions(
    request: Optional[CleanupRequest] = None,
    services: PixServices = Depends(get_services),
):
    older_than_days = services.settings.CLEANUP_OLDER_THAN_DAYS
    if request is not None and request.older_than_days:
        older_than_days = request.older_than_days

    removed = await services.reporting.clean_old_transactions(older_than_days)
    return {"message": f"Removed {removed} old transactions", "removed": removed}


@router.post("/check-expired")
async def check_expired(services: PixServices = Depends(get_services)):
    expired = await services.reporting.expire_overdue()
    return {"message": f"Marked {expired} transactions as expired", "expired": expired}
