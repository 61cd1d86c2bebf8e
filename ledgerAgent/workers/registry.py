"""Worker registry built from worker cards

Two tiers:
- _discovered: every worker scanned from workers.yaml
- _enabled: the enabled workers (the only ones the coordinator and the delegation tools see)

Worker instances are built on demand by the instance factory the runtime binds, then cached.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .schema import WorkerCard

LOGGER = logging.getLogger(__name__)


class WorkerRegistry:
    """Registry of worker cards and instances

    Lookups:
    - get(worker_id): by id
    - query_by_capability(capability): by capability
    - list_enabled() / enabled_ids()
    """

    def __init__(self):
        self._discovered: Dict[str, WorkerCard] = {}
        self._enabled: Dict[str, WorkerCard] = {}
        self._instances: Dict[str, Any] = {}
        self._instance_factory: Optional[Callable[[WorkerCard], Any]] = None

    # ========== Registration Methods ==========

    def register_discovered(self, card: WorkerCard) -> None:
        self._discovered[card.id] = card
        LOGGER.debug(f"Discovered worker: {card.id} ({card.name})")

    def enable_worker(self, worker_id: str) -> WorkerCard:
        """Enable a discovered worker

        Raises:
            KeyError: the worker was never discovered
        """
        if worker_id not in self._discovered:
            raise KeyError(f"Worker not found in discovered workers: {worker_id}")

        card = self._discovered[worker_id]
        self._enabled[worker_id] = card
        LOGGER.info(f"Enabled worker: {worker_id} ({card.name})")
        return card

    def bind_instance_factory(self, factory: Callable[[WorkerCard], Any]) -> None:
        """Set the instance factory (bound by the runtime once models and channel exist)."""
        self._instance_factory = factory
        self._instances.clear()

    def register_instance(self, worker_id: str, instance: Any) -> None:
        """Register a ready-made instance (tests and custom workers)."""
        if worker_id not in self._enabled:
            raise KeyError(f"Worker not enabled: {worker_id}")
        self._instances[worker_id] = instance

    # ========== Query Methods ==========

    def get(self, worker_id: str) -> Optional[WorkerCard]:
        return self._enabled.get(worker_id)

    def get_discovered(self, worker_id: str) -> Optional[WorkerCard]:
        return self._discovered.get(worker_id)

    def is_discovered(self, worker_id: str) -> bool:
        return worker_id in self._discovered

    def is_enabled(self, worker_id: str) -> bool:
        return worker_id in self._enabled

    def query_by_capability(self, capability: str) -> List[WorkerCard]:
        return [card for card in self._enabled.values() if card.has_capability(capability)]

    def list_enabled(self) -> List[WorkerCard]:
        return list(self._enabled.values())

    def list_discovered(self) -> List[WorkerCard]:
        return list(self._discovered.values())

    def enabled_ids(self) -> List[str]:
        return list(self._enabled)

    # ========== Instance Management ==========

    def get_instance(self, worker_id: str) -> Any:
        """Get the worker instance, creating and caching it on first use

        Raises:
            KeyError: the worker is not enabled
            ValueError: no instance factory is bound
        """
        if worker_id not in self._enabled:
            raise KeyError(f"Worker not enabled: {worker_id}")

        if worker_id in self._instances:
            return self._instances[worker_id]

        if self._instance_factory is None:
            raise ValueError(f"Worker '{worker_id}' has no instance factory bound")

        instance = self._instance_factory(self._enabled[worker_id])
        self._instances[worker_id] = instance
        LOGGER.info(f"Created worker instance: {worker_id}")
        return instance

    # ========== Catalog Generation ==========

    def get_catalog_text(self, detailed: bool = True) -> str:
        """Catalog of the enabled workers for the coordinator's SystemMessage."""
        if not self._enabled:
            return ""

        lines = ["# Tilgjengelige spesialister\n"]
        if detailed:
            for card in self._enabled.values():
                lines.append(card.get_catalog_text())
        else:
            for card in self._enabled.values():
                lines.append(f"- **{card.id}**: {card.description}")
        return "\n".join(lines)

    def get_stats(self) -> Dict[str, int]:
        return {
            "discovered": len(self._discovered),
            "enabled": len(self._enabled),
            "cached_instances": len(self._instances),
        }
