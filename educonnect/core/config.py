from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    All config comes from .env file.
    Change values in .env, they automatically apply everywhere.
    """

    # ── Database ──────────────────────────────────────────
    DATABASE_URL: str                     # asyncpg, used by FastAPI
    DATABASE_SYNC_URL: str | None = None  # psycopg2, used only by Alembic

    # ── JWT ───────────────────────────────────────────────
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    TWO_FACTOR_PENDING_EXPIRE_MINUTES: int = 5

    # ── Two-factor ────────────────────────────────────────
    SMS_CODE_EXPIRE_MINUTES: int = 10
    SMS_CODE_MAX_ATTEMPTS: int = 5
    TOTP_ISSUER: str = "EduConnect ERP"

    # ── Verification workflow ─────────────────────────────
    USER_CREATE_MAX_ATTEMPTS: int = 3
    USER_CREATE_RETRY_BACKOFF_SECONDS: float = 1.0

    # ── Passwords ─────────────────────────────────────────
    BCRYPT_ROUNDS: int = 12

    # ── CORS ──────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    # ── App ───────────────────────────────────────────────
    APP_ENV: str = "production"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # ── Notifications (Brevo) ─────────────────────────────
    BREVO_API_KEY: str | None = None
    EMAIL_FROM: str = "no-reply@educonnect.edu"
    EMAIL_FROM_NAME: str = "EduConnect ERP"
    SMS_SENDER: str = "EduConnect"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def origins_list(self) -> list[str]:
        """Splits comma-separated ALLOWED_ORIGINS into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Single instance used across the entire app
settings = get_settings()
