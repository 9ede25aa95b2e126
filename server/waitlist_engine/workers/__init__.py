"""Background workers for the waitlist engine."""

from .base import BaseWorker
from .expiry_sweep_worker import ExpirySweepWorker
from .manager import WorkerManager

__all__ = ["BaseWorker", "ExpirySweepWorker", "WorkerManager"]
