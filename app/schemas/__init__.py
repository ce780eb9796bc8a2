from app.schemas.transaction import (
    TransactionStatus,
    TERMINAL_STATUSES,
    PlanData,
    PixCode,
    Transaction,
    TransactionFilter,
    TransactionEvent,
    TransactionStats,
    TransactionStatusResponse,
    CreatePreferenceRequest,
    CreatePreferenceResponse,
    CleanupRequest,
)
from app.schemas.provider import (
    WebhookEvent,
    ProviderPayment,
    ProviderPreference,
    PreferenceRequest,
)

__all__ = [
    "TransactionStatus", "TERMINAL_STATUSES", "PlanData", "PixCode", "Transaction",
    "TransactionFilter", "TransactionEvent", "TransactionStats", "TransactionStatusResponse",
    "CreatePreferenceRequest", "CreatePreferenceResponse", "CleanupRequest",
    "WebhookEvent", "ProviderPayment", "ProviderPreference", "PreferenceRequest",
]
