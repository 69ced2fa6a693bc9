from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "FactuSystem"
    ENVIRONMENT: str = "production"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480
    DATABASE_URL: str = "sqlite+pysqlite:///./factu.db"
    MERCADOPAGO_ACCESS_TOKEN: str = ""
    MERCADOPAGO_API_BASE_URL: str = "https://api.mercadopago.com"
    MERCADOPAGO_COLLECTOR_ID: str = ""
    MERCADOPAGO_POS_ID: str = ""
    MERCADOPAGO_TIMEOUT_SEC: float = 10.0
    MERCADOPAGO_NOTIFICATION_URL: str = ""
    BANK_WEBHOOK_SECRET: str = ""
    PAYMENT_EXPIRATION_MINUTES: int = 15
    PAYMENT_TOLERANCE: Decimal = Decimal("0.10")
    DEFAULT_CURRENCY: str = "ARS"
    DEFAULT_VAT_RATE: Decimal = Decimal("21")
    NOTIFICATION_POLL_INTERVAL_SEC: float = 2.0
    METRICS_ENABLED: bool = True

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


settings = Settings()
