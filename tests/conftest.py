"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from ledgerAgent.config.settings import Settings  # noqa: E402
from ledgerAgent.runtime import build_application  # noqa: E402
from tests.fakes import InMemoryLedger, RoutedChatModel, ScriptedChatModel  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def make_app(settings):
    """Build an application wired to the in-memory ledger and scripted models.

    Usage: ``app = make_app(ledger, coordinator=[...], workers={"Kjøpsspesialist": [...]})``
    """

    def _make(ledger, coordinator=(), workers=None):
        coordinator_model = ScriptedChatModel(coordinator)
        worker_model = RoutedChatModel({marker: ScriptedChatModel(steps) for marker, steps in (workers or {}).items()})
        models = {"coordinator": coordinator_model, "worker": worker_model}
        app = build_application(client=ledger, settings=settings, model_resolver=lambda role: models[role])
        app.models = models
        return app

    return _make
