from app.services.container import PixServices, build_services
from app.services.payment_intent import PaymentIntentCreator
from app.services.poller import StatusPoller
from app.services.reconciliation import ReconciliationEngine
from app.services.reporting import ReportingService
from app.services.store import TransactionStore
from app.services.webhook import WebhookReceiver

__all__ = [
    "PixServices",
    "build_services",
    "PaymentIntentCreator",
    "StatusPoller",
    "ReconciliationEngine",
    "ReportingService",
    "TransactionStore",
    "WebhookReceiver",
]
