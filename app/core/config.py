from pydantic_settings import BaseSettings
from typing import Dict, Optional
from functools import lru_cache


class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "HealthConnect Consultation API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Bearer token expected by the job endpoints (unset = open)
    CRON_SECRET: Optional[str] = None

    # Database
    DATABASE_URL: str = "sqlite:///./healthconnect.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Flutterwave
    FLUTTERWAVE_PUBLIC_KEY: Optional[str] = None
    FLUTTERWAVE_SECRET_KEY: Optional[str] = None
    FLUTTERWAVE_WEBHOOK_SECRET: Optional[str] = None
    FLUTTERWAVE_MODE: str = "sandbox"
    FLUTTERWAVE_BASE_URL: str = "https://api.flutterwave.com/v3"
    PAYMENT_CURRENCY: str = "SLL"
    ENABLE_MOCK_PAYMENTS: bool = False
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    GATEWAY_PAGE_SIZE: int = 100
    APP_URL: str = "http://localhost:3000"

    # Jobs
    RECONCILIATION_WINDOW_DAYS: int = 30
    AMOUNT_TOLERANCE_LEONE: int = 1
    REMINDER_WINDOW_MINUTES: int = 60

    # SMS (Africa's Talking)
    AFRICAS_TALKING_USERNAME: Optional[str] = None
    AFRICAS_TALKING_API_KEY: Optional[str] = None
    AFRICAS_TALKING_SENDER_ID: Optional[str] = None
    AFRICAS_TALKING_BASE_URL: str = "https://api.africastalking.com/version1"

    # Email
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    EMAIL_FROM: Optional[str] = None

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Consultation pricing in Leones
    CONSULTATION_PRICING: Dict[str, int] = {
        "video": 15000,
        "voice": 10000,
        "sms": 5000,
    }

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
