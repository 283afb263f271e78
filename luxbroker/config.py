import logging
import warnings

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: str = "development"  # development | test | production

    # Server
    luxbroker_host: str = "0.0.0.0"
    luxbroker_port: int = 8000
    log_level: str = "INFO"

    # Database (sqlite for local dev, postgresql+asyncpg for production)
    database_url: str = "sqlite+aiosqlite:///./data/luxbroker.db"

    # Auth
    jwt_secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7 days
    wallet_session_expire_minutes: int = 60

    # Shared key-value store (nonce challenges, rate-limit windows).
    # Empty means per-process in-memory storage.
    redis_url: str = ""

    # Wallet nonce challenges
    nonce_ttl_seconds: int = 300
    nonce_sweep_interval_seconds: int = 120

    # Ledger addresses
    ledger_address_prefix: str = "r"
    ledger_address_min_length: int = 25
    ledger_address_max_length: int = 35

    # Referral attribution
    attribution_lock_days: int = 90

    # Tier table (JSON file); empty uses the built-in table
    tier_table_path: str = ""

    # Notification delivery
    notification_webhook_url: str = ""
    notification_webhook_timeout_seconds: int = 5

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Reverse proxies allowed to set X-Forwarded-For
    trusted_proxies: str = "127.0.0.1,::1,localhost,172.17.0.1"

    # Rate Limiting (fixed window per category)
    rate_limit_default_max: int = 60
    rate_limit_default_window_seconds: int = 60
    rate_limit_write_max: int = 20
    rate_limit_write_window_seconds: int = 60
    rate_limit_auth_max: int = 10
    rate_limit_auth_window_seconds: int = 300
    rate_limit_sensitive_max: int = 5
    rate_limit_sensitive_window_seconds: int = 60
    rate_limit_register_max: int = 5
    rate_limit_register_window_seconds: int = 3600
    rate_limit_sweep_interval_seconds: int = 300

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()

# Warn on insecure defaults (logged at startup, not a hard error for dev convenience)
_logger = logging.getLogger("luxbroker.config")
_INSECURE_SECRETS = {
    "dev-secret-change-in-production",
    "change-me-to-a-random-string",
    "change-me-to-a-random-64-char-string",
}


def validate_security_posture(cfg: Settings) -> None:
    is_prod = cfg.environment.lower() in {"production", "prod"}

    if cfg.jwt_secret_key in _INSECURE_SECRETS:
        if is_prod:
            raise RuntimeError(
                "FATAL: JWT_SECRET_KEY is set to an insecure default. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable before deploying to production."
            )
        warnings.warn(
            "JWT_SECRET_KEY is set to the default insecure value. "
            "Set a strong random secret via the JWT_SECRET_KEY environment variable for production.",
            stacklevel=1,
        )

    if cfg.cors_origins == "*":
        if is_prod:
            raise RuntimeError(
                "FATAL: CORS_ORIGINS cannot be '*' in production. "
                "Set explicit trusted origins via the CORS_ORIGINS environment variable."
            )
        _logger.warning(
            "CORS_ORIGINS is set to '*' (allow all). "
            "Configure specific origins for production via the CORS_ORIGINS environment variable."
        )

    if is_prod and not cfg.redis_url:
        _logger.warning(
            "REDIS_URL is not set: nonce challenges and rate-limit windows are kept "
            "in process memory and are not shared between instances."
        )


validate_security_posture(settings)
