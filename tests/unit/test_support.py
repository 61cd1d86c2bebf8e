"""Tests for error handling, message truncation, model wiring and the CLI helpers."""

import asyncio
import logging

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from ledgerAgent.config.settings import ObservabilitySettings, Settings
from ledgerAgent.utils import logging_utils
from ledgerAgent.runtime.model_resolver import build_model_resolver, resolve_model_configs
from ledgerAgent.utils.error_handler import (
    InvalidDateError,
    LedgerApiError,
    RateLimitError,
    plain_language_error,
    with_error_boundary,
)
from ledgerAgent.utils.message_utils import truncate_messages_safely
from main import load_file, parse_file_mentions


# ========== Error handling ==========

def test_plain_language_prefers_curated_text():
    assert plain_language_error(InvalidDateError("issueDate: bad format")) == "Datoen ble ikke godtatt av regnskapssystemet."
    assert plain_language_error(asyncio.TimeoutError()).startswith("Det tok for lang tid")


def test_plain_language_scrubs_technical_detail():
    text = plain_language_error('HTTP 422 {"field": "x"} fra purchase_agent: beløpet mangler for kjøpet')
    assert "422" not in text
    assert "purchase_agent" not in text
    assert "{" not in text
    assert "beløpet mangler" in text
    assert plain_language_error("404") == "Noe gikk galt i regnskapssystemet."


@pytest.mark.asyncio
async def test_error_boundary_turns_exceptions_into_replies():
    @with_error_boundary("test.node")
    async def failing(state):
        raise RateLimitError("429 from ledger")

    @with_error_boundary("test.node")
    async def crashing(state):
        raise RuntimeError("KeyError: 'lines'")

    limited = await failing({})
    crashed = await crashing({})

    assert "for mange forespørsler" in limited["error"]
    assert isinstance(limited["messages"][0], AIMessage)
    assert "KeyError" not in crashed["messages"][0].content


def test_error_boundary_wraps_sync_nodes():
    @with_error_boundary("test.sync")
    def node(state):
        raise LedgerApiError("500 Internal Server Error")

    result = node({})
    assert result["error"] == "Jeg fikk ikke fullført dette: Regnskapssystemet avviste forespørselen."


# ========== Logging ==========

def test_logging_follows_observability_settings(tmp_path, monkeypatch):
    root = logging.getLogger("ledgerAgent")
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "propagate", root.propagate)
    monkeypatch.setattr(logging_utils, "PREVIEW_LIMIT", logging_utils.PREVIEW_LIMIT)
    observability = ObservabilitySettings(LOG_DIR=str(tmp_path), LOG_LEVEL="warning", LOG_PROMPT_MAX_LENGTH=120)

    logger = logging_utils.setup_logging(observability=observability)
    try:
        file_handler = next(h for h in logger.handlers if isinstance(h, logging.FileHandler))
        assert file_handler.level == logging.WARNING
        assert list(tmp_path.glob("ledgeragent_*.log"))
        assert logging_utils._preview("x" * 300) == "x" * 120 + "... (truncated)"
        assert logging_utils._preview("x" * 300, 200).startswith("x" * 200)
    finally:
        for handler in logger.handlers:
            handler.close()


def test_unknown_log_level_falls_back_to_info(tmp_path, monkeypatch):
    root = logging.getLogger("ledgerAgent")
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "propagate", root.propagate)
    monkeypatch.setattr(logging_utils, "PREVIEW_LIMIT", logging_utils.PREVIEW_LIMIT)

    logger = logging_utils.setup_logging(observability=ObservabilitySettings(LOG_DIR=str(tmp_path), LOG_LEVEL="chatty"))
    try:
        assert next(h for h in logger.handlers if isinstance(h, logging.FileHandler)).level == logging.INFO
    finally:
        for handler in logger.handlers:
            handler.close()


# ========== Settings ==========

def test_delegation_budget_is_inside_the_turn_budget():
    settings = Settings()
    settings.governance.request_timeout_seconds = 10
    assert 0 < settings.governance.delegation_timeout_seconds < 10
    assert settings.governance.delegation_timeout_seconds == pytest.approx(10 * settings.governance.delegation_budget_share)


# ========== Message truncation ==========

def test_truncation_keeps_tool_pairs_and_system_prompt():
    call = AIMessage(content="", tool_calls=[{"name": "search_purchases", "args": {}, "id": "t1", "type": "tool_call"}])
    messages = [
        SystemMessage(content="system"),
        HumanMessage(content="a"),
        HumanMessage(content="b"),
        call,
        ToolMessage(content="{}", tool_call_id="t1"),
        HumanMessage(content="c"),
    ]

    kept = truncate_messages_safely(messages, keep_recent=2)

    assert kept[0].content == "system"
    assert call in kept
    assert [m.content for m in kept[-2:]] == ["{}", "c"]
    assert all(m.content not in ("a", "b") for m in kept if isinstance(m, HumanMessage))


# ========== Model wiring ==========

def test_model_resolver_is_lazy_and_checks_roles():
    configs = resolve_model_configs(Settings())
    configs["coordinator"]["api_key"] = None
    resolver = build_model_resolver(configs)

    with pytest.raises(KeyError):
        resolver("planner")
    with pytest.raises(RuntimeError):
        resolver("coordinator")


# ========== CLI helpers ==========

def test_file_mentions_are_pulled_out_of_the_text():
    names, text = parse_file_mentions("Registrer #kvittering.jpg og #faktura.pdf takk")
    assert names == ["kvittering.jpg", "faktura.pdf"]
    assert text == "Registrer  og  takk"


def test_load_file_reads_bytes_and_type(tmp_path):
    receipt = tmp_path / "kvittering.png"
    receipt.write_bytes(b"\x89PNG")

    loaded = load_file(str(receipt))

    assert loaded == {"name": "kvittering.png", "type": "image/png", "data": b"\x89PNG"}
    with pytest.raises(FileNotFoundError):
        load_file(str(tmp_path / "mangler.jpg"))
