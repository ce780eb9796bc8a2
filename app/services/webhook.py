"""Inbound Mercado Pago notifications.

The webhook body is only a trigger: after the signature check the payment is
re-read from the provider, and that response is what drives the state
machine. Once a request is authenticated and recognized as a payment event
the provider always gets a 200, even if the downstream work failed, so its
retry mechanism cannot amplify an internal failure.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from app.log import get_logger
from app.schemas.provider import ProviderPayment, WebhookEvent
from app.schemas.transaction import Transaction
from app.services.exceptions import PixError, ProviderError, TransactionNotFoundError
from app.services.provider import PaymentProvider
from app.services.reconciliation import ReconciliationEngine, TransitionMetadata, TransitionSource
from app.services.signature import verify_signature
from app.services.status_mapper import map_provider_status
from app.utils.currency import reais_to_cents

PAYMENT_TOPICS = {"payment", "payments"}


@dataclass
class WebhookResponse:
    status_code: int
    body: dict = field(default_factory=dict)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class WebhookReceiver:
    def __init__(
        self,
        engine: ReconciliationEngine,
        provider: PaymentProvider,
        secret: Optional[str] = None,
    ):
        self.engine = engine
        self.store = engine.store
        self.provider = provider
        self.secret = secret or None
        self._logger = get_logger("webhook_receiver")

    async def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        """Process a ``POST /pix/webhook`` call."""
        signature = _header(headers, "x-signature")
        request_id = _header(headers, "x-request-id")

        if not verify_signature(raw_body, signature, self.secret, request_id=request_id):
            self._logger.warning("webhook_signature_invalid", request_id=request_id)
            return WebhookResponse(401, {"error": "Invalid signature"})

        try:
            event = WebhookEvent.model_validate(json.loads(raw_body.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, ValidationError):
            self._logger.warning("webhook_payload_invalid")
            return WebhookResponse(400, {"error": "Invalid payload"})

        log = self._logger.bind(event_id=event.id, type=event.type, action=event.action)
        log.info("webhook_received", payment_id=event.data.id, live_mode=event.live_mode)

        if event.type not in PAYMENT_TOPICS:
            log.info("webhook_ignored")
            return WebhookResponse(
                200,
                {"message": "Webhook received but not processed (not a payment)", "type": event.type},
            )

        if not event.data.id:
            log.warning("webhook_missing_payment_id")
            return WebhookResponse(400, {"error": "Missing data.id"})

        return await self._reconcile(event.data.id)

    async def handle_notification(
        self,
        topic: Optional[str],
        resource_id: Optional[str],
        headers: Mapping[str, str],
        raw_body: bytes = b"",
    ) -> WebhookResponse:
        """Process the query-string style notification (``?topic=payment&id=...``)."""
        signature = _header(headers, "x-signature")
        request_id = _header(headers, "x-request-id")

        if not verify_signature(
            raw_body, signature, self.secret, request_id=request_id, data_id=resource_id
        ):
            self._logger.warning("notification_signature_invalid", request_id=request_id)
            return WebhookResponse(401, {"error": "Invalid signature"})

        if topic not in PAYMENT_TOPICS or not resource_id:
            self._logger.info("notification_ignored", topic=topic)
            return WebhookResponse(
                200, {"message": "Notification received but not processed", "topic": topic}
            )

        return await self._reconcile(resource_id)

    async def _reconcile(self, payment_id: str) -> WebhookResponse:
        log = self._logger.bind(payment_id=payment_id)
        try:
            payment = await self.provider.get_payment(payment_id)
            transaction = await self._correlate(payment)
            self._check_amount(payment, transaction)
            result = await self.engine.apply_status(
                transaction.id,
                map_provider_status(payment.status),
                TransitionMetadata(
                    source=TransitionSource.WEBHOOK,
                    raw_status=payment.status,
                    status_detail=payment.status_detail,
                    provider_payment_id=payment.id,
                ),
            )
        except ProviderError as e:
            log.warning("webhook_provider_fetch_failed", error=str(e))
            return self._ack_failure(payment_id, "provider_unavailable")
        except TransactionNotFoundError:
            log.warning("webhook_transaction_unknown")
            return self._ack_failure(payment_id, "transaction_not_found")
        except PixError as e:
            log.error("webhook_processing_failed", error=str(e))
            return self._ack_failure(payment_id, e.error)

        log.info(
            "webhook_processed",
            transaction_id=result.transaction.id,
            outcome=result.outcome.value,
            status=result.transaction.status.value,
        )
        # Internal status, not the raw provider one: callers act on our state machine
        return WebhookResponse(
            200,
            {
                "message": "Webhook processed successfully",
                "payment_id": payment_id,
                "transaction_id": result.transaction.id,
                "status": result.transaction.status.value,
            },
        )

    def _check_amount(self, payment: ProviderPayment, transaction: Transaction) -> None:
        if payment.transaction_amount is None:
            return
        received = reais_to_cents(payment.transaction_amount)
        if received != transaction.amount:
            # status still follows the provider; the mismatch is for manual review
            self._logger.error(
                "amount_mismatch",
                transaction_id=transaction.id,
                payment_id=payment.id,
                expected=transaction.amount,
                received=received,
            )

    async def _correlate(self, payment: ProviderPayment) -> Transaction:
        # external_reference is our own transaction id
        if payment.external_reference:
            try:
                return await self.store.get(payment.external_reference)
            except TransactionNotFoundError:
                pass
        return await self.store.find_by_provider_payment_id(payment.id)

    @staticmethod
    def _ack_failure(payment_id: str, reason: Any) -> WebhookResponse:
        return WebhookResponse(
            200,
            {
                "message": "Webhook received but processing failed",
                "payment_id": payment_id,
                "status": None,
                "reason": reason,
            },
        )
