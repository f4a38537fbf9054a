from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

PRODUCTION_ENVS = {"production", "prod"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "identity-onboarding"

    CORS_ORIGINS: str = "http://localhost:8081,http://localhost:19006"

    DATABASE_URL: str = "sqlite+pysqlite:///./onboarding.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    DEVICE_ID_HEADER: str = "X-Device-Id"

    PHONE_COUNTRY_CODE: str = "91"
    PHONE_NATIONAL_DIGITS: int = 10

    OTP_CODE_LENGTH: int = 6
    OTP_TTL_SECONDS: int = 30
    OTP_RESEND_COOLDOWN_SECONDS: int = 30
    OTP_MAX_ATTEMPTS: int = 5
    OTP_VERIFY_STALE_SECONDS: int = 20
    # Locally accepted challenges when the provider is unavailable; ignored in production.
    OTP_DEMO_FALLBACK_ENABLED: bool = False
    OTP_RATE_LIMIT_WINDOW_SECONDS: int = 300
    OTP_REQUEST_RATE_LIMIT: int = 5

    SMS_PROVIDER: str = "dummy"  # dummy | smsaero
    SMSAERO_EMAIL: str = ""
    SMSAERO_API_KEY: str = ""
    OTP_SMS_TEMPLATE: str = "Your verification code: {code}"

    DATA_ENCRYPTION_SECRET: str = "change_me_data_encryption"
    CHALLENGE_RETENTION_HOURS: int = 24

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    def is_production(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() in PRODUCTION_ENVS

    def demo_fallback_allowed(self) -> bool:
        return bool(self.OTP_DEMO_FALLBACK_ENABLED) and not self.is_production()


settings = Settings()
