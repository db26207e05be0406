import os
from typing import Literal

from pydantic import BaseModel, Field


EnvName = Literal["development", "staging", "production"]
ValidationPolicy = Literal["reject_record", "null_field"]

ENVIRONMENT: EnvName = os.getenv("ENVIRONMENT", "development").lower()  # type: ignore[assignment]

_TRUTHY = {"1", "true", "yes"}


def is_prod() -> bool:
    return ENVIRONMENT == "production"


def env_flag(name: str, default: str = "false") -> bool:
    """Return True when the environment variable holds a truthy value."""
    return os.getenv(name, default).lower() in _TRUTHY


def parse_delays(value: str | None, default: list[int]) -> list[int]:
    """Parse a comma-separated list of millisecond delays.

    Falls back to ``default`` for an empty or malformed value.

    Examples:
        >>> parse_delays("100, 200,400", [1])
        [100, 200, 400]
        >>> parse_delays("x", [1])
        [1]
    """
    if not value:
        return list(default)
    try:
        delays = [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        return list(default)
    return delays or list(default)


def _env_int(name: str, default: int):
    return lambda: int(os.getenv(name, str(default)))


def _env_float(name: str, default: float):
    return lambda: float(os.getenv(name, str(default)))


def _env_str(name: str, default: str):
    return lambda: os.getenv(name, default)


DEFAULT_POLL_DELAYS_MS = [500, 1000, 2000, 4000, 8000]


class Settings(BaseModel):
    """Typed configuration for the broker, its workers and the orchestrator.

    Why this exists:
    - Centralize environment configuration across library modules and scripts
    - Read the environment at instantiation so tests and jobs can override it

    How to use:
    - Instantiate once per process (or per test) and pass values down
    - Override values via environment variables

    Examples:
    - Point every component at Postgres and widen the consumer pool:
      ```bash
      export DATABASE_URL=postgresql://broker:secret@db:5432/messagebox
      export CONSUMER_CONCURRENCY=8     # max in-flight subscriptions per worker
      export CONSUMER_BATCH_SIZE=100    # pending rows fetched per poll
      ```
    - Null offending fields instead of rejecting whole records:
      ```bash
      export VALIDATION_POLICY=null_field
      ```
    """
    environment: EnvName = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "development").lower())  # type: ignore[arg-type]
    database_url: str = Field(default_factory=_env_str("DATABASE_URL", ""))
    log_level: str = Field(default_factory=_env_str("LOG_LEVEL", "INFO"))
    metrics_port: int = Field(default_factory=_env_int("METRICS_PORT", 9000))

    # Type inference and record validation
    inference_sample_size: int = Field(default_factory=_env_int("INFERENCE_SAMPLE_SIZE", 100))
    validation_policy: ValidationPolicy = Field(default_factory=_env_str("VALIDATION_POLICY", "reject_record"))  # type: ignore[arg-type]

    # Publish-side idempotency window
    publish_dedup_window_hours: int = Field(default_factory=_env_int("PUBLISH_DEDUP_WINDOW_HOURS", 24))

    # Destination consumers
    consumer_batch_size: int = Field(default_factory=_env_int("CONSUMER_BATCH_SIZE", 50))
    consumer_concurrency: int = Field(default_factory=_env_int("CONSUMER_CONCURRENCY", 4))
    poll_delays_ms: list[int] = Field(
        default_factory=lambda: parse_delays(os.getenv("POLL_DELAYS_MS"), DEFAULT_POLL_DELAYS_MS)
    )

    # Garbage collection
    sweep_interval_seconds: float = Field(default_factory=_env_float("SWEEP_INTERVAL_SECONDS", 30.0))
    sweep_batch_size: int = Field(default_factory=_env_int("SWEEP_BATCH_SIZE", 500))

    # Process log ring buffer
    process_log_capacity: int = Field(default_factory=_env_int("PROCESS_LOG_CAPACITY", 1000))

    # Compute provisioning
    container_registry: str = Field(default_factory=_env_str("CONTAINER_REGISTRY", "localhost:5000"))
    compute_api_url: str = Field(default_factory=_env_str("COMPUTE_API_URL", ""))
    compute_api_token: str = Field(default_factory=_env_str("COMPUTE_API_TOKEN", ""))
    provision_max_wait_seconds: float = Field(default_factory=_env_float("PROVISION_MAX_WAIT_SECONDS", 120.0))
