from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import json
from pathlib import Path

from sqlalchemy.engine import make_url

DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:5173")


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./shelfscout.db"

    # Auth (tokens are issued by the external identity provider)
    AUTH_JWT_SECRET: str = ""
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUD: str = "authenticated"
    AUTH_JWT_ISS: Optional[str] = None

    # CORS - can be JSON string or comma-separated string
    CORS_ORIGINS: str = json.dumps(list(DEFAULT_CORS_ORIGINS))

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    SLOW_QUERY_THRESHOLD_MS: float = 200.0

    # OMDb metadata lookup
    OMDB_API_KEY: str = ""
    OMDB_BASE_URL: str = "https://www.omdbapi.com/"
    METADATA_TIMEOUT_SECONDS: float = 10.0
    METADATA_REQUEST_DELAY_MS: int = 300  # Minimum gap between search calls

    # Recommendation engine
    MIN_COLLECTION_SIZE: int = 3
    DEFAULT_MAX_RESULTS: int = 20
    RECOMMENDATION_CACHE_TTL_SECONDS: int = 60 * 60
    CACHE_REFRESH_DELAY_SECONDS: float = 5.0  # Background refresh after a near-expiry hit
    CACHE_BACKEND: str = "memory"  # memory | database

    # Sessions and background work
    ACTIVITY_SESSION_TIMEOUT_MINUTES: int = 60
    BACKGROUND_DEFAULT_DELAY_SECONDS: float = 2.0
    SMART_UPDATE_INTERVAL_HOURS: int = 6

    model_config = SettingsConfigDict(
        # Load from backend/.env (relative to this file's parent's parent)
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def require_auth(self) -> None:
        """Raise if token verification cannot work with the current configuration."""
        if not self.AUTH_JWT_SECRET.strip():
            raise RuntimeError(
                "AUTH_JWT_SECRET is not set. Add the identity provider's JWT signing secret to backend/.env"
            )

    def get_masked_database_url(self) -> str:
        """DATABASE_URL with the password replaced, safe for logs."""
        url = make_url(self.DATABASE_URL)
        return url.render_as_string(hide_password=True)

    @property
    def cors_origins_list(self) -> list[str]:
        """CORS_ORIGINS accepts a JSON list or a comma-separated string."""
        raw = (self.CORS_ORIGINS or "").strip()
        if raw.startswith("["):
            try:
                return [str(origin) for origin in json.loads(raw)]
            except json.JSONDecodeError:
                pass
        origins = [origin.strip() for origin in raw.strip("[]").split(",") if origin.strip()]
        return [origin.strip('"\'') for origin in origins] or list(DEFAULT_CORS_ORIGINS)


settings = Settings()
