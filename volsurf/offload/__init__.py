"""백그라운드 워커 프로세스로 등치면 추출 오프로드."""

from .coordinator import OffloadCoordinator
from .pool import Worker, WorkerPool
from .worker import in_worker_context, workers_supported

__all__ = [
    "OffloadCoordinator",
    "Worker",
    "WorkerPool",
    "in_worker_context",
    "workers_supported",
]
