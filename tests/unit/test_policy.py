"""Tests for the coordinator turn policy."""

import pytest

from ledgerAgent.coordinator.policy import PolicyChecker, TurnKind


@pytest.fixture
def checker():
    return PolicyChecker()


@pytest.mark.parametrize("text", [
    "Slett alle fakturaene fra i fjor",
    "fjern alt i regnskapet",
    "Alle kjøp skal slettes",
    "Kan du starte regnskapet på nytt?",
])
def test_bulk_deletion_gets_a_question(checker, text):
    decision = checker.classify(text)
    assert decision.kind == TurnKind.DESTRUCTIVE_BULK
    assert decision.blocks_delegation
    assert decision.question.endswith("?")


@pytest.mark.parametrize("text", ["Fiks alt", "rydd opp i regnskapet!", "gjør resten"])
def test_broad_requests_are_narrowed(checker, text):
    decision = checker.classify(text)
    assert decision.kind == TurnKind.BROAD
    assert "Hva vil du at jeg skal se på først?" in decision.question


@pytest.mark.parametrize("text", ["ja", "Ja takk!", "ok", "det stemmer", "Bekreftet."])
def test_short_confirmations(checker, text):
    decision = checker.classify(text)
    assert decision.kind == TurnKind.ACKNOWLEDGEMENT
    assert not decision.blocks_delegation


@pytest.mark.parametrize("text", [
    "Registrer kjøp av papir for 500 kr",
    "Slett faktura 10004",
    "ja, men bruk konto 6540 i stedet",
])
def test_scoped_requests_are_normal(checker, text):
    assert checker.classify(text).kind == TurnKind.NORMAL


def test_attachment_followup(checker):
    assert checker.is_attachment_followup("Her er kvitteringene")
    assert checker.is_attachment_followup("")
    assert checker.is_attachment_followup("ja")
    assert not checker.is_attachment_followup("Her er kvitteringen på 500 kr")
    assert not checker.is_attachment_followup("Registrer dette kjøpet")


def test_builtin_rules_without_config(tmp_path):
    checker = PolicyChecker(config_path=tmp_path / "missing.yaml")
    assert checker.classify("slett alle kjøp").kind == TurnKind.DESTRUCTIVE_BULK
    assert checker.classify("ok").kind == TurnKind.ACKNOWLEDGEMENT


def test_configured_patterns_override_builtin(tmp_path):
    config = tmp_path / "rules.yaml"
    config.write_text("acknowledgement:\n  patterns:\n    - '^\\s*jepp\\s*$'\n", encoding="utf-8")
    checker = PolicyChecker(config_path=config)
    assert checker.classify("jepp").kind == TurnKind.ACKNOWLEDGEMENT
    assert checker.classify("ja").kind == TurnKind.NORMAL
    assert checker.patterns("acknowledgement") == [r"^\s*jepp\s*$"]
