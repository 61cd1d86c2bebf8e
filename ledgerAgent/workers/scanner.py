"""Worker scanner: discovers and registers workers from workers.yaml

Steps:
1. read the worker card entries from workers.yaml
2. import each action factory and prompt body
3. build the WorkerCard and register it with the WorkerRegistry
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .registry import WorkerRegistry
from .schema import WorkerCapability, WorkerCard, WorkerSkill
from ledgerAgent.config.project_root import resolve_project_path

LOGGER = logging.getLogger(__name__)

DEFAULT_WORKERS_CONFIG = "ledgerAgent/config/workers.yaml"


def import_factory(factory_path: str) -> Any:
    """Import an object by dotted path

    Args:
        factory_path: "module.path:attribute"

    Returns:
        the imported object (function, class or string constant)

    Raises:
        ImportError: the module cannot be imported
        AttributeError: the attribute does not exist

    Examples:
        >>> build = import_factory("ledgerAgent.workers.domains.purchases:build_actions")
    """
    try:
        module_path, attr_name = factory_path.split(":")
        module = importlib.import_module(module_path)
        return getattr(module, attr_name)
    except (ValueError, ImportError, AttributeError) as e:
        LOGGER.error(f"Failed to import '{factory_path}': {e}")
        raise


def parse_worker_card_from_config(worker_id: str, config: Dict[str, Any]) -> WorkerCard:
    """Build a WorkerCard from its YAML entry

    Raises:
        KeyError: a required field is missing
        ImportError: the factory cannot be imported
    """
    factory = import_factory(config["factory_path"])

    instructions = config.get("instructions", "")
    if config.get("instructions_path"):
        instructions = import_factory(config["instructions_path"])

    capabilities = [
        WorkerCapability(name=cap["name"], description=cap.get("description", ""))
        for cap in config.get("capabilities", [])
    ]
    skills = [
        WorkerSkill(
            name=skill["name"],
            description=skill["description"],
            examples=skill.get("examples", []),
        )
        for skill in config.get("skills", [])
    ]

    return WorkerCard(
        id=worker_id,
        name=config["name"],
        description=config["description"],
        factory=factory,
        instructions=instructions,
        clarifiers=list(config.get("clarifiers", [])),
        capabilities=capabilities,
        skills=skills,
        tags=list(config.get("tags", [])),
        enabled=config.get("enabled", True),
    )


def load_workers_config(config_path: Path | str) -> Dict[str, Any]:
    """Load the workers.yaml file

    Raises:
        FileNotFoundError: the file does not exist
        yaml.YAMLError: the file is not valid YAML
    """
    if isinstance(config_path, str):
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Worker config not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    LOGGER.debug(f"Loaded worker config from {config_path}")
    return config


def scan_workers_from_config(config_path: Optional[Path | str] = None) -> WorkerRegistry:
    """Scan workers.yaml and register every worker in it

    Args:
        config_path: path to workers.yaml (defaults to the bundled config)

    Returns:
        the populated WorkerRegistry
    """
    registry = WorkerRegistry()

    if config_path is None:
        config_path = resolve_project_path(DEFAULT_WORKERS_CONFIG)

    config = load_workers_config(config_path)

    for worker_id, worker_config in (config.get("workers") or {}).items():
        try:
            card = parse_worker_card_from_config(worker_id, worker_config)
        except (KeyError, ImportError, AttributeError, ValueError) as e:
            LOGGER.error(f"Failed to register worker '{worker_id}': {e}")
            continue

        registry.register_discovered(card)
        if card.enabled:
            registry.enable_worker(worker_id)
        else:
            LOGGER.info(f"Registered worker (disabled): {worker_id}")

    stats = registry.get_stats()
    LOGGER.info(f"Worker scan complete: {stats['discovered']} discovered, {stats['enabled']} enabled")
    return registry


def load_default_worker_registry() -> WorkerRegistry:
    return scan_workers_from_config()
