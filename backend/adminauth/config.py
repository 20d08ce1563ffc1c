import logging
from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class KeySpec(BaseModel):
    """One JWT key entry. Passed through the environment as JSON, e.g.

    JWT_ACTIVE_KEY='{"id": "k1", "private_pem_location": "/keys/k1.pem",
                     "public_pem_location": "/keys/k1.pub.pem", "algorithm": "RS256"}'
    """

    id: str
    private_pem_location: str | None = None  # active key only
    public_pem_location: str
    algorithm: str = "RS256"  # RS256 / RS384 / RS512 / ES256 / ES384 / ES512


class Settings(BaseSettings):
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    # JWT
    JWT_ISSUER: str = "foxblog"
    JWT_ACCESS_TOKEN_SECONDS: int = 7200
    JWT_CLOCK_SKEW_SECONDS: int = 30
    JWT_LOG_KEYS_AT_STARTUP: bool = False
    JWT_ACTIVE_KEY: KeySpec | None = None
    JWT_PASSIVE_KEYS: list[KeySpec] = []

    # TOTP
    TOTP_ISSUER: str = "FoxBlog"
    TOTP_SECRET_BYTES: int = 20
    TOTP_ALLOWED_DRIFT_STEPS: int = 1

    # Login challenges
    LOGIN_CHALLENGE_TTL_SECONDS: int = 300
    LOGIN_MAX_ATTEMPTS: int = 6
    CHALLENGE_SWEEP_INTERVAL_SECONDS: int = 60

    # Optional bootstrap administrator (see adminauth.seed)
    ADMIN_USERNAME: str = ""
    ADMIN_PASSWORD_HASH: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()

    if settings.APP_ENV == "production" and settings.JWT_ACTIVE_KEY is None:
        raise RuntimeError(
            "FATAL: JWT_ACTIVE_KEY is not configured. "
            "Provide the active signing key as JSON, e.g. "
            'JWT_ACTIVE_KEY=\'{"id": "k1", "private_pem_location": "...", "public_pem_location": "..."}\''
        )

    # Reject wildcard CORS in production
    if settings.APP_ENV == "production":
        origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
        if "*" in origins:
            raise RuntimeError(
                "FATAL: CORS_ORIGINS contains '*' which is not allowed in production. "
                "Set explicit allowed origins, e.g. CORS_ORIGINS=https://blog.example.com"
            )

    if settings.APP_ENV == "production" and settings.JWT_CLOCK_SKEW_SECONDS > 300:
        logger.warning(
            "JWT_CLOCK_SKEW_SECONDS=%d is unusually large; expired tokens stay usable that long.",
            settings.JWT_CLOCK_SKEW_SECONDS,
        )

    return settings


def clear_settings_cache() -> None:
    """Clear the cached Settings so the next call to ``get_settings()``
    re-reads environment variables.  Called before a key reload so rotated
    key locations are picked up without a process restart.
    """
    get_settings.cache_clear()
