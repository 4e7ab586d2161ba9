from pydantic_settings import BaseSettings
from typing import Optional, List


def _parse_allowed_origins(v: str) -> List[str]:
    """Parse comma-separated origins string; strip whitespace; keep non-empty."""
    if not v or not v.strip():
        return []
    return [o.strip() for o in v.split(",") if o.strip()]


_DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:3002",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
    "http://127.0.0.1:3002",
]


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql://postgres:postgres@db:5432/funnels"

    # CORS: comma-separated extra origins for production (e.g. https://app.example.com)
    # Default localhost origins are always included.
    ALLOWED_ORIGINS_EXTRA: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Return CORS allowed origins: default localhost + ALLOWED_ORIGINS_EXTRA."""
        return _DEFAULT_CORS_ORIGINS + _parse_allowed_origins(self.ALLOWED_ORIGINS_EXTRA)

    # Logging
    LOG_LEVEL: str = "INFO"

    # Session classification
    BOUNCE_WINDOW_SECONDS: int = 1800  # Single-view sessions idle this long are bounces
    ABANDON_TIMEOUT_MINUTES: int = 30  # Multi-view unconverted sessions idle this long are abandoned

    # A/B comparison: minimum visitors per variant before results are flagged as significant
    SIGNIFICANCE_MIN_VISITORS: int = 100

    # Outbound side effects (webhooks, emails)
    OUTBOUND_MAX_ATTEMPTS: int = 3
    OUTBOUND_BACKOFF_SECONDS: int = 2  # Doubles on every failed attempt
    OUTBOUND_TIMEOUT_SECONDS: float = 10.0

    # Brevo (transactional email for send_email actions)
    BREVO_API_KEY: Optional[str] = None
    EMAIL_SENDER: str = "noreply@funnels.local"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        # Environment variables win over .env entries


settings = Settings()
