"""Model resolver wiring using environment-derived settings.

Converts the Pydantic model settings into ChatOpenAI instances, one per
decision role (``coordinator`` and ``worker``). Instances are created lazily
and cached, so a role that is never used never needs credentials.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, TypedDict

from langchain_openai import ChatOpenAI

from ledgerAgent.agents import ModelResolver
from ledgerAgent.config.settings import Settings


class ModelConfig(TypedDict):
    id: str
    api_key: Optional[str]
    base_url: Optional[str]


def resolve_model_configs(settings: Settings) -> Dict[str, ModelConfig]:
    """Normalized model configs (id + credentials) per role."""
    return {
        "coordinator": {
            "id": settings.models.coordinator,
            "api_key": settings.models.coordinator_api_key,
            "base_url": settings.models.coordinator_base_url,
        },
        "worker": {
            "id": settings.models.worker,
            "api_key": settings.models.worker_api_key,
            "base_url": settings.models.worker_base_url,
        },
    }


def _chat_kwargs(model: str, api_key: Optional[str], base_url: Optional[str]) -> Dict[str, object]:
    if not api_key:
        raise RuntimeError(f"Mangler API-nøkkel for modellen {model}. Sett den i .env.")
    kwargs: Dict[str, object] = {"model": model, "api_key": api_key, "temperature": 0.2}
    if base_url:
        kwargs["base_url"] = base_url
    return kwargs


def build_model_resolver(model_configs: Dict[str, ModelConfig]) -> ModelResolver:
    """Construct a resolver that returns ChatOpenAI-compatible clients.

    Args:
        model_configs: output of ``resolve_model_configs()``

    Returns:
        ModelResolver: function taking a role name and returning a chat model

    Raises:
        KeyError: unknown role
        RuntimeError: missing API key for the requested role
    """
    factories: Dict[str, Callable[[], ChatOpenAI]] = {
        role: (lambda cfg=config: ChatOpenAI(**_chat_kwargs(cfg["id"], cfg["api_key"], cfg["base_url"])))
        for role, config in model_configs.items()
    }
    cache: Dict[str, ChatOpenAI] = {}

    def resolver(role: str):
        if role not in factories:
            raise KeyError(f"Ukjent modellrolle: {role}")
        if role not in cache:
            cache[role] = factories[role]()
        return cache[role]

    return resolver
