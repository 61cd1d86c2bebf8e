"""Interfaces for decision-step dependencies."""

from __future__ import annotations

from typing import Protocol


class ModelResolver(Protocol):
    """Callable that returns a LangChain-compatible chat model for a role.

    Roles are ``"coordinator"`` and ``"worker"``.
    """

    def __call__(self, role: str):
        ...
