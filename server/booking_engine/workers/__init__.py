"""Background schedulers for payment deadlines and resource status."""

from .base import BaseWorker, RunSummary
from .deadline_worker import DeadlineWorker
from .manager import WorkerManager
from .resource_status_worker import ResourceStatusWorker

__all__ = ["BaseWorker", "DeadlineWorker", "ResourceStatusWorker", "RunSummary", "WorkerManager"]
