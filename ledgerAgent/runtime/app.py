"""Runtime assembly: registry, workers, delegation channel and coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ledgerAgent.agents import ModelResolver
from ledgerAgent.config.settings import Settings, get_settings
from ledgerAgent.coordinator import Coordinator, PolicyChecker, TaskSession
from ledgerAgent.delegation.channel import DelegationChannel
from ledgerAgent.ledger.client import HttpLedgerClient
from ledgerAgent.workers.registry import WorkerRegistry
from ledgerAgent.workers.scanner import scan_workers_from_config
from ledgerAgent.workers.worker import Worker

from .model_resolver import build_model_resolver, resolve_model_configs

LOGGER = logging.getLogger(__name__)


@dataclass
class Application:
    """The assembled assistant."""

    coordinator: Coordinator
    registry: WorkerRegistry
    channel: DelegationChannel
    client: object
    settings: Settings

    def new_session(self) -> TaskSession:
        return TaskSession()

    async def aclose(self) -> None:
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()


def _create_worker_registry(config_path: Optional[Path] = None) -> WorkerRegistry:
    LOGGER.info("Initializing Worker Registry...")
    registry = scan_workers_from_config(config_path)
    for card in registry.list_enabled():
        LOGGER.info(f"    ✓ Enabled: {card.id} ({card.name}) - {len(card.skills)} skills")
    return registry


def build_application(
    *,
    client=None,
    settings: Optional[Settings] = None,
    model_resolver: Optional[ModelResolver] = None,
    workers_config: Optional[Path] = None,
    policy: Optional[PolicyChecker] = None,
) -> Application:
    """Assemble the assistant.

    Args:
        client: LedgerClient (defaults to ``HttpLedgerClient`` from settings)
        settings: application settings (defaults to the cached ``.env`` settings)
        model_resolver: role → chat model (defaults to ChatOpenAI per role)
        workers_config: alternative workers.yaml
        policy: alternative turn policy

    Returns:
        Application
    """
    settings = settings or get_settings()
    resolver = model_resolver or build_model_resolver(resolve_model_configs(settings))
    ledger = client if client is not None else HttpLedgerClient(settings.ledger)

    registry = _create_worker_registry(workers_config)
    registry.bind_instance_factory(
        lambda card: Worker(card, resolver("worker"), ledger, settings, registry)
    )

    channel = DelegationChannel(
        registry,
        max_depth=settings.governance.max_delegation_depth,
        timeout_seconds=settings.governance.delegation_timeout_seconds,
    )
    coordinator = Coordinator(registry, channel, resolver("coordinator"), settings, policy=policy)
    LOGGER.info(f"Application ready with {len(registry.enabled_ids())} workers")
    return Application(coordinator=coordinator, registry=registry, channel=channel, client=ledger, settings=settings)
