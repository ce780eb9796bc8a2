"""Mercado Pago REST client.

Only the calls the reconciliation flow needs: create a PIX-only preference,
read a payment, and search payments by external reference. Each call is a
single request with a bounded timeout; retries are left to the next webhook
delivery or poll tick.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from app.log import get_logger
from app.schemas.provider import PreferenceRequest, ProviderPayment, ProviderPreference
from app.services.exceptions import ProviderConfigError, ProviderError, ProviderTimeoutError
from app.utils.currency import cents_to_reais


class PaymentProvider(ABC):
    """Interface for the upstream payment provider."""

    @abstractmethod
    async def create_preference(self, request: PreferenceRequest) -> ProviderPreference:
        raise NotImplementedError

    @abstractmethod
    async def get_payment(self, payment_id: str) -> ProviderPayment:
        raise NotImplementedError

    @abstractmethod
    async def find_payment_by_reference(self, external_reference: str) -> Optional[ProviderPayment]:
        """Latest payment for an external reference, or None if the payer has not paid yet."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class MercadoPagoProvider(PaymentProvider):
    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 10.0,
        notification_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.notification_url = notification_url or None
        self._logger = get_logger("mercadopago_provider")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        if not self.access_token:
            raise ProviderConfigError("MERCADO_PAGO_ACCESS_TOKEN not configured")
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = self._headers()
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self._logger.warning("provider_timeout", method=method, path=path)
            raise ProviderTimeoutError(f"Mercado Pago timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            self._logger.warning("provider_unreachable", method=method, path=path, error=str(e))
            raise ProviderError(f"Mercado Pago request failed: {e}") from e

        if response.status_code >= 400:
            self._logger.warning(
                "provider_http_error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(
                f"Mercado Pago API returned {response.status_code}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Mercado Pago returned a non-JSON response") from e

    def _preference_body(self, request: PreferenceRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "items": [
                {
                    "id": request.external_reference,
                    "title": request.title[:120],
                    "quantity": 1,
                    "unit_price": float(cents_to_reais(request.amount)),
                    "currency_id": "BRL",
                }
            ],
            "payer": {"email": request.payer_email},
            "payment_methods": {
                "excluded_payment_types": [
                    {"id": "credit_card"},
                    {"id": "debit_card"},
                    {"id": "ticket"},
                ],
                "installments": 1,
            },
            "external_reference": request.external_reference,
            "expires": True,
            "expiration_date_to": request.expires_at.isoformat(timespec="milliseconds"),
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url
        return body

    async def create_preference(self, request: PreferenceRequest) -> ProviderPreference:
        data = await self._request("POST", "/checkout/preferences", json=self._preference_body(request))
        if not isinstance(data, dict) or not data.get("id"):
            raise ProviderError("Mercado Pago preference response has no id")

        # PIX data shows up under point_of_interaction when the provider returns it
        tx_data = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        return ProviderPreference(
            id=data["id"],
            init_point=data.get("init_point") or data.get("sandbox_init_point"),
            qr_code=tx_data.get("qr_code") or data.get("qr_code"),
            qr_code_base64=tx_data.get("qr_code_base64") or data.get("qr_code_base64"),
        )

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        data = await self._request("GET", f"/v1/payments/{payment_id}")
        try:
            return ProviderPayment.model_validate(data)
        except ValueError as e:
            raise ProviderError(f"Malformed payment payload for {payment_id}") from e

    async def find_payment_by_reference(self, external_reference: str) -> Optional[ProviderPayment]:
        data = await self._request(
            "GET",
            "/v1/payments/search",
            params={
                "external_reference": external_reference,
                "sort": "date_created",
                "criteria": "desc",
            },
        )
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            return None
        try:
            return ProviderPayment.model_validate(results[0])
        except ValueError as e:
            raise ProviderError(f"Malformed payment search result for {external_reference}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
