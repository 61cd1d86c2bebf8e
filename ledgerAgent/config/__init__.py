"""Configuration helpers for ledgerAgent."""

from .project_root import get_project_root, resolve_project_path
from .settings import (
    AccountingSettings,
    GovernanceSettings,
    LedgerSettings,
    ModelRoutingSettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "AccountingSettings",
    "GovernanceSettings",
    "LedgerSettings",
    "ModelRoutingSettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
    "get_project_root",
    "resolve_project_path",
]
