from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


def _parse_cors_origins(s: str) -> List[str]:
    """Parse CORS_ORIGINS from comma-separated or JSON array string."""
    s = (s or "").strip()
    if not s:
        return []
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
            return [str(x).strip() for x in out if x]
        except ValueError:
            pass
    return [x.strip() for x in s.split(",") if x.strip()]


class Settings(BaseSettings):
    """Application settings from env."""

    APP_NAME: str = "School Event Manager"

    # Database (challenge store)
    DATABASE_URL: str = "sqlite:///./eventotp.db"
    # Local development only; production schema comes from alembic
    AUTO_CREATE_TABLES: bool = False

    LOG_LEVEL: str = "INFO"

    # CORS – must include the origin where the login screen runs
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def cors_origins_list(cls, v: object) -> List[str]:
        if isinstance(v, list):
            return [str(x).strip() for x in v if x]
        return _parse_cors_origins(str(v) if v else "")

    # Email relay – set in .env; nothing is sent when SMTP_HOST is empty
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "School Event Manager"
    # Port 465 style implicit TLS instead of STARTTLS
    SMTP_USE_SSL: bool = False
    # Avoid blocking the request forever if the relay is slow or unreachable
    SMTP_TIMEOUT_SECONDS: float = 15.0

    # OTP challenge lifecycle
    OTP_TTL_SECONDS: int = 600
    OTP_MAX_ATTEMPTS: int = 5
    # Client countdown before "resend" becomes available
    OTP_RESEND_COOLDOWN_SECONDS: int = 60
    # Extra delivery attempts after the first relay failure
    OTP_DELIVERY_RETRIES: int = 1

    # Base URL the capture client talks to
    OTP_SERVICE_URL: str = "http://localhost:8000"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
