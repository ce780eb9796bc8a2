from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import api_router
from app.config import PLAN_PRICES, Settings, settings as default_settings
from app.database import init_db
from app.log import configure_logging, get_logger
from app.services.container import PixServices, build_services
from app.services.exceptions import PixError
from app.utils.currency import cents_to_reais


def create_app(
    services: Optional[PixServices] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the API. A prebuilt ``services`` container skips startup wiring."""
    settings = settings or (services.settings if services else default_settings)
    configure_logging(settings.LOG_LEVEL)
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services(settings)
            if app.state.services.db_engine is not None:
                await init_db(app.state.services.db_engine)
        logger.info("startup", environment=settings.ENVIRONMENT)
        yield
        if owned:
            await app.state.services.aclose()
        else:
            await app.state.services.poller.shutdown()
        logger.info("shutdown")

    app = FastAPI(
        title="PIX Transaction Reconciliation",
        description="Reconciles PIX payment status from Mercado Pago webhooks and polling",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "x-signature", "x-request-id"],
    )

    @app.exception_handler(PixError)
    async def pix_error_handler(request: Request, exc: PixError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.error, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {
            "name": "PIX Transaction Reconciliation",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "environment": settings.ENVIRONMENT}

    @app.get("/config")
    async def public_config():
        """Non-secret configuration the checkout page needs."""
        return {
            "environment": settings.ENVIRONMENT,
            "payment_expiry_minutes": settings.PAYMENT_EXPIRY_MINUTES,
            "poll_interval_seconds": settings.POLL_INTERVAL_SECONDS,
            "webhook_signature_enabled": not settings.insecure_webhooks,
            "plans": {
                plan_type: {
                    "name": plan["name"],
                    "price": str(cents_to_reais(plan["base"])),
                    "vip_price": str(cents_to_reais(plan["base"] + plan["vip_extra"])),
                }
                for plan_type, plan in PLAN_PRICES.items()
            },
        }

    return app


app = create_app()
