from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    ENVIRONMENT: str = Field(default="development", description="development | production")
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./pix_transactions.db",
        description="Database connection URL"
    )
    LOG_LEVEL: str = Field(default="INFO")

    # Mercado Pago
    MERCADO_PAGO_ACCESS_TOKEN: str = Field(default="", description="Provider access token")
    MERCADO_PAGO_WEBHOOK_SECRET: str = Field(default="", description="Shared secret for x-signature")
    MERCADO_PAGO_BASE_URL: str = Field(default="https://api.mercadopago.com")
    MERCADO_PAGO_NOTIFICATION_URL: str = Field(default="", description="Webhook URL sent with preferences")
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0, le=60)

    # Payment lifecycle
    PAYMENT_EXPIRY_MINUTES: int = Field(default=30, gt=0)
    POLL_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)
    LOCAL_EXPIRY_ENABLED: bool = Field(default=True, description="Let the poller expire overdue transactions")
    EXPIRY_GRACE_SECONDS: int = Field(default=0, ge=0)
    CLEANUP_OLDER_THAN_DAYS: int = Field(default=90, gt=0)

    ALLOWED_ORIGINS: list[str] = Field(
        default=[
            "http://localhost:8080",
            "http://localhost:5173",
            "http://localhost:3000",
        ]
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def insecure_webhooks(self) -> bool:
        """Webhook signatures are not checked when no secret is configured."""
        return not self.MERCADO_PAGO_WEBHOOK_SECRET


settings = Settings()


# Plan prices in centavos (BRL minor units)
PLAN_PRICES = {
    "monthly": {"base": 6890, "vip_extra": 1000, "name": "Plano Profissional"},
    "yearly": {"base": 63855, "vip_extra": 12000, "name": "Plano Profissional Anual"},
}
