from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional
from pydantic import BaseModel, BeforeValidator, ConfigDict


def _as_str(v: Any) -> Any:
    # Mercado Pago sends numeric ids in some payloads and strings in others
    if v is None or isinstance(v, str):
        return v
    return str(v)


ProviderId = Annotated[str, BeforeValidator(_as_str)]


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[ProviderId] = None


class WebhookEvent(BaseModel):
    """Notification body pushed by Mercado Pago."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[ProviderId] = None
    type: Optional[str] = None
    action: Optional[str] = None
    live_mode: Optional[bool] = None
    date_created: Optional[str] = None
    data: WebhookData = WebhookData()


class ProviderPayment(BaseModel):
    """Subset of GET /v1/payments/{id} used for reconciliation."""

    model_config = ConfigDict(extra="ignore")

    id: ProviderId
    status: Optional[str] = None
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None
    transaction_amount: Optional[Decimal] = None


class ProviderPreference(BaseModel):
    """Result of creating a PIX preference upstream."""

    id: ProviderId
    init_point: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None


class PreferenceRequest(BaseModel):
    external_reference: str
    title: str
    amount: int
    payer_email: str
    expires_at: datetime
