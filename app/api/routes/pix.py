import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.api.deps import get_services
from app.schemas.transaction import (
    CreatePreferenceRequest,
    CreatePreferenceResponse,
    Transaction,
    TransactionStatusResponse,
)
from app.services.container import PixServices
from app.services.poller import TimeRemaining

router = APIRouter()


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    services: PixServices = Depends(get_services),
):
    """Mercado Pago payment webhook. Signature-checked against the raw body."""
    raw_body = await request.body()
    response = await services.webhook.handle(raw_body, request.headers)
    return JSONResponse(status_code=response.status_code, content=response.body)


@router.post("/notifications/mercadopago")
async def receive_notification(
    request: Request,
    topic: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    services: PixServices = Depends(get_services),
):
    """IPN-style notification: ``?topic=payment&id=<payment id>``."""
    raw_body = await request.body()
    response = await services.webhook.handle_notification(
        topic or request.query_params.get("type"),
        id or request.query_params.get("data.id"),
        request.headers,
        raw_body=raw_body,
    )
    return JSONResponse(status_code=response.status_code, content=response.body)


@router.get("/status/{transaction_id}", response_model=TransactionStatusResponse)
async def get_status(
    transaction_id: str,
    refresh: bool = Query(False, description="Ask the provider before answering"),
    services: PixServices = Depends(get_services),
):
    if refresh:
        transaction = await services.poller.check_now(transaction_id)
    else:
        transaction = await services.store.get(transaction_id)
    return TransactionStatusResponse.from_transaction(transaction)


@router.get("/status/{transaction_id}/stream")
async def stream_status(
    transaction_id: str,
    services: PixServices = Depends(get_services),
):
    """Newline-delimited JSON: time updates while pending, then the final status."""
    # 404 before the stream starts
    await services.store.get(transaction_id)
    return StreamingResponse(
        _status_events(services, transaction_id),
        media_type="application/x-ndjson",
    )


async def _status_events(services: PixServices, transaction_id: str):
    updates: asyncio.Queue = asyncio.Queue()

    def on_time_update(remaining: TimeRemaining):
        updates.put_nowait({
            "event": "time_update",
            "hours": remaining.hours,
            "minutes": remaining.minutes,
            "seconds": remaining.seconds,
            "is_expired": remaining.is_expired,
        })

    def on_status_change(transaction: Transaction):
        updates.put_nowait({
            "event": "status_change",
            **TransactionStatusResponse.from_transaction(transaction).model_dump(mode="json"),
        })

    handle = services.poller.start_monitoring(
        transaction_id,
        on_status_change=on_status_change,
        on_time_update=on_time_update,
    )
    getter = None
    try:
        while True:
            getter = asyncio.ensure_future(updates.get())
            done, _ = await asyncio.wait({getter, handle.task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield json.dumps(getter.result()) + "\n"
                continue
            # monitor finished; flush what it emitted last
            while not updates.empty():
                yield json.dumps(updates.get_nowait()) + "\n"
            break
    finally:
        if getter is not None and not getter.done():
            getter.cancel()
        handle.cancel()


@router.post("/create-preference", response_model=CreatePreferenceResponse)
async def create_preference(
    request: CreatePreferenceRequest,
    services: PixServices = Depends(get_services),
):
    """Create a PIX payment preference and its pending transaction."""
    result = await services.payment_intents.create(
        request.planType,
        False if request.isVip is None else request.isVip,
        request.userEmail,
    )
    return CreatePreferenceResponse(
        preference_id=result.preference_id,
        qr_code=result.qr_code,
        qr_code_base64=result.qr_code_base64,
        transaction_id=result.transaction_id,
        amount=result.amount,
        expires_at=result.expires_at,
    )
