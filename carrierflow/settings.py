import os
from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "sandbox").lower()
_ENV_PREFIX = ENVIRONMENT.upper()


class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # sandbox / production / preproduction
    ENVIRONMENT: str = ENVIRONMENT

    # Per-environment credentials win over the generic pair
    API_USERNAME: str = os.getenv(f"{_ENV_PREFIX}_API_USERNAME", os.getenv("API_USERNAME", ""))
    API_PASSWORD: str = os.getenv(f"{_ENV_PREFIX}_API_PASSWORD", os.getenv("API_PASSWORD", ""))
    UPSTREAM_TIMEOUT_SEC: float = float(os.getenv("UPSTREAM_TIMEOUT_SEC", "30"))

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "notifications")

    # memory: single process, lock-protected maps; redis: shared across workers
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()
    STORE_KEY_PREFIX: str = os.getenv("STORE_KEY_PREFIX", "carrierflow")
    LOCK_TTL_MS: int = int(os.getenv("LOCK_TTL_MS", "35000"))
    LOCK_WAIT_SEC: float = float(os.getenv("LOCK_WAIT_SEC", "5.0"))

    # Post-completion welcome message delivery
    # - "sync": send inline (best effort)
    # - "rq": enqueue on RQ_QUEUE_NAME
    # - "off": never send
    NOTIFY_MODE: str = os.getenv("NOTIFY_MODE", "sync").lower()
    DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "en")

    # Periodic cleanup of expired in-flight entries. 0 disables the sweeper.
    SWEEP_INTERVAL_SEC: int = int(os.getenv("SWEEP_INTERVAL_SEC", "60"))

    WEBHOOK_HISTORY_SIZE: int = int(os.getenv("WEBHOOK_HISTORY_SIZE", "100"))
    ANONYMOUS_REFERENCE_RETENTION_DAYS: int = int(os.getenv("ANONYMOUS_REFERENCE_RETENTION_DAYS", "400"))

    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

settings = Settings()
