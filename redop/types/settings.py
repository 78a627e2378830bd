import os
from typing import Any

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Number of concurrent reconcile workers pulling from the work queue
WORKERS = int(_getenv("WORKERS", 2))

#: Number of times a failing key is requeued before it is dropped
MAX_REQUEUES = int(_getenv("MAX_REQUEUES", 5))

#: First backoff delay for a failing key; doubles on every failure
QUEUE_BASE_DELAY_SECONDS = float(_getenv("QUEUE_BASE_DELAY_SECONDS", 0.5))

#: Upper bound for the per-key backoff delay
QUEUE_MAX_DELAY_SECONDS = float(_getenv("QUEUE_MAX_DELAY_SECONDS", 300.0))

#: Seconds between full resyncs of every known Redis object
RESYNC_PERIOD_SECONDS = float(_getenv("RESYNC_PERIOD_SECONDS", 600.0))

#: Seconds to wait for a halted database's workload to go away
HALT_TIMEOUT_SECONDS = float(_getenv("HALT_TIMEOUT_SECONDS", 300.0))

#: Seconds between checks while waiting for a halted database's workload
HALT_POLL_INTERVAL_SECONDS = float(_getenv("HALT_POLL_INTERVAL_SECONDS", 2.0))

#: Attempts for an optimistic-concurrency write before giving up
CONFLICT_RETRIES = int(_getenv("CONFLICT_RETRIES", 5))

#: Container image repository for redis servers; the tag is spec.version
REDIS_IMAGE = _getenv("REDIS_IMAGE", "redis")

#: Port of the Prometheus metrics HTTP server
METRICS_PORT = int(_getenv("METRICS_PORT", 8000))


class Settings:
    """Operator settings"""

    workers: int = WORKERS
    max_requeues: int = MAX_REQUEUES
    queue_base_delay_seconds: float = QUEUE_BASE_DELAY_SECONDS
    queue_max_delay_seconds: float = QUEUE_MAX_DELAY_SECONDS
    resync_period_seconds: float = RESYNC_PERIOD_SECONDS
    halt_timeout_seconds: float = HALT_TIMEOUT_SECONDS
    halt_poll_interval_seconds: float = HALT_POLL_INTERVAL_SECONDS
    conflict_retries: int = CONFLICT_RETRIES
    redis_image: str = REDIS_IMAGE
    metrics_port: int = METRICS_PORT

    def __init__(
        self,
        *args,
        workers: int = None,
        max_requeues: int = None,
        queue_base_delay_seconds: float = None,
        queue_max_delay_seconds: float = None,
        resync_period_seconds: float = None,
        halt_timeout_seconds: float = None,
        halt_poll_interval_seconds: float = None,
        conflict_retries: int = None,
        redis_image: str = None,
        metrics_port: int = None,
        **kwargs,
    ):
        if workers is not None:
            self.workers = workers

        if max_requeues is not None:
            self.max_requeues = max_requeues

        if queue_base_delay_seconds is not None:
            self.queue_base_delay_seconds = queue_base_delay_seconds

        if queue_max_delay_seconds is not None:
            self.queue_max_delay_seconds = queue_max_delay_seconds

        if resync_period_seconds is not None:
            self.resync_period_seconds = resync_period_seconds

        if halt_timeout_seconds is not None:
            self.halt_timeout_seconds = halt_timeout_seconds

        if halt_poll_interval_seconds is not None:
            self.halt_poll_interval_seconds = halt_poll_interval_seconds

        if conflict_retries is not None:
            self.conflict_retries = conflict_retries

        if redis_image is not None:
            self.redis_image = redis_image

        if metrics_port is not None:
            self.metrics_port = metrics_port
