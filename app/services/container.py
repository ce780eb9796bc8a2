"""Construction of the service graph used by the API."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config import Settings
from app.database import create_engine, create_session_factory
from app.log import get_logger
from app.services.exceptions import ConfigurationError
from app.services.payment_intent import PaymentIntentCreator
from app.services.poller import StatusPoller
from app.services.provider import MercadoPagoProvider, PaymentProvider
from app.services.reconciliation import ReconciliationEngine
from app.services.reporting import ReportingService
from app.services.store import TransactionStore
from app.services.webhook import WebhookReceiver


@dataclass
class PixServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    store: TransactionStore
    provider: PaymentProvider
    engine: ReconciliationEngine
    webhook: WebhookReceiver
    poller: StatusPoller
    payment_intents: PaymentIntentCreator
    reporting: ReportingService
    db_engine: Optional[AsyncEngine] = None

    async def aclose(self) -> None:
        await self.poller.shutdown()
        await self.provider.aclose()
        if self.db_engine is not None:
            await self.db_engine.dispose()


def build_services(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    provider: Optional[PaymentProvider] = None,
) -> PixServices:
    """Wire the store, engine and the two triggers that feed it.

    Refuses to build in production without a webhook secret.
    """
    logger = get_logger("services")

    if settings.insecure_webhooks:
        if settings.is_production:
            raise ConfigurationError(
                "MERCADO_PAGO_WEBHOOK_SECRET must be set when ENVIRONMENT=production"
            )
        logger.warning("webhook_signature_disabled", environment=settings.ENVIRONMENT)

    db_engine = None
    if session_factory is None:
        db_engine = create_engine(settings.DATABASE_URL)
        session_factory = create_session_factory(db_engine)

    if provider is None:
        provider = MercadoPagoProvider(
            access_token=settings.MERCADO_PAGO_ACCESS_TOKEN,
            base_url=settings.MERCADO_PAGO_BASE_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            notification_url=settings.MERCADO_PAGO_NOTIFICATION_URL,
        )

    store = TransactionStore(session_factory)
    engine = ReconciliationEngine(store)

    return PixServices(
        settings=settings,
        session_factory=session_factory,
        store=store,
        provider=provider,
        engine=engine,
        webhook=WebhookReceiver(engine, provider, secret=settings.MERCADO_PAGO_WEBHOOK_SECRET),
        poller=StatusPoller(
            engine,
            provider,
            interval=settings.POLL_INTERVAL_SECONDS,
            local_expiry=settings.LOCAL_EXPIRY_ENABLED,
            expiry_grace_seconds=settings.EXPIRY_GRACE_SECONDS,
        ),
        payment_intents=PaymentIntentCreator(
            store, provider, expiry_minutes=settings.PAYMENT_EXPIRY_MINUTES
        ),
        reporting=ReportingService(session_factory, engine),
        db_engine=db_engine,
    )
