from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COMMAND_ENGINE_", env_file=".env", extra="ignore")

    # Worker pool / work queue
    WORKER_COUNT: int = 4
    QUEUE_CAPACITY: int = 1000
    BACKPRESSURE_MODE: Literal["block", "reject"] = "reject"
    ENQUEUE_TIMEOUT_SECONDS: Optional[float] = None
    WORKER_POLL_INTERVAL_SECONDS: float = 0.2
    WATCHDOG_INTERVAL_SECONDS: float = 1.0

    # Shutdown
    SHUTDOWN_POLICY: Literal["drain", "drop"] = "drain"
    SHUTDOWN_GRACE_SECONDS: float = 30.0

    # Retry coordinator
    RETRY_BASE_DELAY_SECONDS: float = 10.0
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 3600.0
    RETRY_JITTER_RATIO: float = 0.0
    RETRY_SWEEP_INTERVAL_SECONDS: float = 1.0
    MAX_PENDING_RETRIES: Optional[int] = 10000

    # Dead-letter store; SQL-backed when a DSN is configured
    DEAD_LETTER_DSN: Optional[str] = None
    DEAD_LETTER_MAX_ENTRIES: Optional[int] = None

    # Undo/redo
    MAX_HISTORY_SIZE: int = 50

    LOG_LEVEL: str = "INFO"


settings = Settings()
