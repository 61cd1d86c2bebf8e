"""Specialist workers: cards, registry, action gate and the worker loop."""

from .registry import WorkerRegistry
from .scanner import load_default_worker_registry, scan_workers_from_config
from .schema import WorkerCapability, WorkerCard, WorkerSkill
from .worker import Worker, WorkerResult

__all__ = [
    "Worker",
    "WorkerCapability",
    "WorkerCard",
    "WorkerRegistry",
    "WorkerResult",
    "WorkerSkill",
    "load_default_worker_registry",
    "scan_workers_from_config",
]
