import logging
from urllib.parse import urlparse, urlunparse
from pydantic_settings import BaseSettings
from functools import lru_cache

from adsync.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # App
    app_name: str = "Meta Ads Sync"
    app_env: str = "development"
    app_debug: bool = False
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_json: bool = True

    port: int = 8000

    # Database: production uses postgresql://, local dev falls back to SQLite
    database_url: str = "sqlite+aiosqlite:///./adsync.db"
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_ssl: bool = False
    db_echo: bool = False

    @property
    def async_database_url(self) -> str:
        """Convert standard postgres URL to asyncpg format for SQLAlchemy."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    # Redis: empty means the cache runs on its in-memory fallback
    redis_url: str = ""
    cache_key_prefix: str = "meta-ads:"
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    def _redis_with_db(self, db: int) -> str:
        """Replace Redis DB number in URL using proper URL parsing."""
        parsed = urlparse(self.redis_url or "redis://localhost:6379/0")
        return urlunparse(parsed._replace(path=f"/{db}"))

    @property
    def effective_celery_broker_url(self) -> str:
        """Use explicit CELERY_BROKER_URL if set, otherwise derive from REDIS_URL."""
        if self.celery_broker_url:
            return self.celery_broker_url
        return self._redis_with_db(1)

    @property
    def effective_celery_result_backend(self) -> str:
        """Use explicit CELERY_RESULT_BACKEND if set, otherwise derive from REDIS_URL."""
        if self.celery_result_backend:
            return self.celery_result_backend
        return self._redis_with_db(2)

    # Meta Graph API
    meta_graph_base_url: str = "https://graph.facebook.com/v23.0"
    meta_app_id: str = ""
    meta_app_secret: str = ""
    meta_system_user_id: str = ""
    meta_access_token: str = ""  # session token used when no system user token is available
    meta_webhook_verify_token: str = ""
    api_timeout_seconds: float = 30.0
    api_max_retries: int = 3
    api_retry_base_delay: float = 1.0
    api_retry_max_delay: float = 10.0
    system_token_ttl_hours: int = 24
    token_encryption_key: str = ""  # Fernet key for encrypting stored tokens

    # Sync
    enable_scheduled_sync: bool = False
    sync_batch_size: int = 50
    sync_delay_between_batches: float = 1.0
    insights_sync_days: int = 7

    # Request guard
    rate_limit_max: int = 100
    rate_limit_window_minutes: int = 15
    rate_limit_backend: str = "cache"  # cache | database
    enable_csrf: bool = True
    enable_user_agent_validation: bool = True
    enable_ip_allowlist: bool = False
    blocked_ips: str = ""
    allowed_ips: str = ""
    allowed_origins: str = "http://localhost:3000"

    @staticmethod
    def _split(value: str) -> list[str]:
        return [item.strip().rstrip("/") for item in value.split(",") if item.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return self._split(self.cors_origins)

    @property
    def allowed_origin_list(self) -> list[str]:
        return self._split(self.allowed_origins)

    @property
    def blocked_ip_list(self) -> list[str]:
        return self._split(self.blocked_ips)

    @property
    def allowed_ip_list(self) -> list[str]:
        return self._split(self.allowed_ips)

    @property
    def effective_rate_limit_max(self) -> int:
        """Development gets a much looser request budget."""
        if self.app_env == "development":
            return max(self.rate_limit_max, 1000)
        return self.rate_limit_max

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    class Config:
        env_file = ".env"
        case_sensitive = False


def validate_settings(settings: Settings) -> list[str]:
    """Check configuration at startup.

    Raises ConfigurationError for anything the service cannot run without and
    returns the list of warnings for optional features that will be degraded.
    """
    missing = []
    if not settings.database_url:
        missing.append("DATABASE_URL")
    if settings.enable_scheduled_sync:
        if not settings.meta_app_id:
            missing.append("META_APP_ID")
        if not settings.meta_app_secret:
            missing.append("META_APP_SECRET")
    if settings.rate_limit_backend not in ("cache", "database"):
        missing.append("RATE_LIMIT_BACKEND (cache|database)")
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    warnings = []
    if not settings.redis_url:
        warnings.append("REDIS_URL not set, cache will use in-memory fallback")
    if not settings.meta_system_user_id:
        warnings.append("META_SYSTEM_USER_ID not set, only the session access token will be used")
    if not settings.meta_access_token and not settings.meta_system_user_id:
        warnings.append("No Meta access token configured, Graph API calls will fail")
    if not settings.meta_webhook_verify_token:
        warnings.append("META_WEBHOOK_VERIFY_TOKEN not set, webhook subscriptions will be rejected")
    if not settings.meta_app_secret:
        warnings.append("META_APP_SECRET not set, webhook signatures cannot be verified")
    if not settings.token_encryption_key:
        warnings.append("TOKEN_ENCRYPTION_KEY not set, system tokens will not be persisted")
    for message in warnings:
        logger.warning(message)
    return warnings


@lru_cache()
def get_settings() -> Settings:
    return Settings()
