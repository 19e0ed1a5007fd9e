from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Identity ---
    PROJECT_NAME: str = "Abebe_Gateway"
    ENVIRONMENT: str = "production"

    # --- Persistent Store ---
    DATABASE_URL: str = "sqlite:///./abebe.db"
    REDIS_URL: str | None = None

    # --- Operator channel (Telegram) ---
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_ADMIN_ID: str = ""

    # --- Push (Firebase). Either variable may carry the service account JSON ---
    FIREBASE_ADMINSDK_JSON: str | None = None
    FIREBASE_SERVICE_ACCOUNT: str | None = None

    # --- Upstream Supabase (proxy / realtime / RPC) ---
    SUPABASE_URL: str | None = None
    SUPABASE_ANON_KEY: str | None = None

    # --- Presentation ---
    TIMEZONE: str = "Africa/Addis_Ababa"
    CURRENCY: str = "ETB"

    # --- Delivery discipline ---
    DEDUP_MAX_ENTRIES: int = 500
    DEDUP_TTL_SECONDS: int = 60 * 60 * 24
    VERIFY_BACKOFF_SECONDS: float = 0.8
    IMAGE_RETRY_DELAYS: List[float] = [0, 1, 2, 4]
    OPERATOR_SEND_ATTEMPTS: int = 3
    OPERATOR_SEND_RETRY_SECONDS: float = 2.0
    SESSION_TTL_SECONDS: int = 3600
    MAX_BODY_BYTES: int = int(4.5 * 1024 * 1024)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"  # the deploy environment carries plenty of unrelated variables
    )

    @property
    def firebase_credentials_json(self) -> str | None:
        return self.FIREBASE_ADMINSDK_JSON or self.FIREBASE_SERVICE_ACCOUNT

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

settings = Settings()
