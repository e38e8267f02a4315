from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    DATABASE_URL: str = "postgresql://localhost:5432/digest"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Auth (bearer JWT issued by the excluded auth layer)
    AUTH_JWT_SECRET: str | None = None
    AUTH_JWKS_URL: str | None = None
    AUTH_AUDIENCE: str = "authenticated"

    # Twilio settings
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None
    TWILIO_WHATSAPP_NUMBER: str | None = None
    TWILIO_STATUS_CALLBACK_URL: str | None = None
    TWILIO_API_BASE_URL: str = "https://api.twilio.com/2010-04-01"

    # ElevenLabs settings
    ELEVENLABS_API_KEY: str | None = None
    ELEVENLABS_API_BASE_URL: str = "https://api.elevenlabs.io/v1"
    DEFAULT_VOICE_ID: str = "rachel"

    # =================================================================
    # DELIVERY SETTINGS
    # =================================================================
    ASSISTANT_NAME: str = "mailieAI"
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 10.0
    CALL_RING_TIMEOUT_SECONDS: int = 30
    PROVIDER_RETRY_AFTER_SECONDS: int = 60
    DISPATCH_LOCK_TIMEOUT_SECONDS: float = 30.0

    # =================================================================
    # PHONE VERIFICATION SETTINGS
    # =================================================================
    VERIFICATION_CODE_LENGTH: int = 6
    VERIFICATION_CODE_TTL_SECONDS: int = 300  # 5 minutes
    VERIFICATION_MAX_ATTEMPTS: int = 3
    VERIFICATION_GRACE_SECONDS: int = 900
    VERIFIED_PHONE_TTL_SECONDS: int = 90 * 24 * 3600
    VERIFICATION_LOCK_TIMEOUT_SECONDS: float = 20.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    def whatsapp_configured(self) -> bool:
        return self.twilio_configured() and bool(self.TWILIO_WHATSAPP_NUMBER)

    def elevenlabs_configured(self) -> bool:
        return bool(self.ELEVENLABS_API_KEY)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config


settings = Settings()
