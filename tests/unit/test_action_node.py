"""Tests for the consent and duplicate gate around worker actions."""

import json

import pytest

from ledgerAgent.attachments.relay import AttachmentRelay
from ledgerAgent.config.settings import Settings
from ledgerAgent.transcript.creations import CreationFact
from ledgerAgent.workers.action_node import ActionNode
from ledgerAgent.workers.actions import ActionContext, specs_by_name
from ledgerAgent.workers.domains import purchases
from tests.fakes import InMemoryLedger, calls

RECEIPT = {
    "date": "2026-10-01",
    "description": "Clas Ohlson kontorrekvisita",
    "lines": [{"description": "Papir", "amount": 500, "account": "6800"}],
}


def _node(ledger, files=()):
    ctx = ActionContext(
        client=ledger,
        attachments=AttachmentRelay().offer(list(files)),
        settings=Settings(),
        worker_id="purchase_agent",
    )
    specs = purchases.build_actions(ctx)
    return ActionNode(specs, worker_id="purchase_agent"), specs_by_name(specs)


def _outcomes(update):
    return [json.loads(m.content) for m in update["messages"]]


@pytest.mark.asyncio
async def test_side_effect_without_consent_becomes_a_proposal():
    ledger = InMemoryLedger()
    node, _ = _node(ledger)

    update = await node({"messages": [calls(("create_purchase", RECEIPT))]})

    outcome = _outcomes(update)[0]
    assert outcome["requires_confirmation"]
    assert outcome["proposal"]["action"] == "create_purchase"
    assert "500,00 kr inkl. mva" in outcome["message"]
    assert update["proposals"] == [outcome["message"]]
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_consented_call_runs_and_records_the_creation():
    ledger = InMemoryLedger()
    node, specs = _node(ledger)
    state = {
        "messages": [calls(("create_purchase", RECEIPT))],
        "confirmed": True,
        "consented": [specs["create_purchase"].consent_key(RECEIPT)],
    }

    update = await node(state)

    outcome = _outcomes(update)[0]
    assert outcome["success"]
    assert outcome["intent"] == specs["create_purchase"].intent_key(RECEIPT)
    assert ledger.count("create_purchase") == 1
    fact = update["known_creations"][0]
    assert (fact.entity_type, fact.worker_id) == ("purchase", "purchase_agent")


@pytest.mark.asyncio
async def test_consent_is_matched_exactly():
    ledger = InMemoryLedger()
    node, specs = _node(ledger)
    changed = {**RECEIPT, "date": "2026-10-02"}
    state = {
        "messages": [calls(("create_purchase", changed))],
        "confirmed": True,
        "consented": [specs["create_purchase"].consent_key(RECEIPT)],
    }

    outcome = _outcomes(await node(state))[0]
    assert outcome["requires_confirmation"]
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_same_intent_twice_creates_once():
    ledger = InMemoryLedger()
    node, specs = _node(ledger)
    existing = CreationFact(
        entity_type="purchase",
        identifier=4,
        action="create_purchase",
        worker_id="purchase_agent",
        intent=specs["create_purchase"].intent_key(RECEIPT),
    )
    state = {
        "messages": [calls(("create_purchase", RECEIPT))],
        "confirmed": True,
        "confirmed_actions": ["create_purchase"],
        "known_creations": [existing],
    }

    outcome = _outcomes(await node(state))[0]
    assert outcome["duplicate_prevented"]
    assert outcome["created"] == {"purchase": 4}
    assert ledger.count("create_purchase") == 0


@pytest.mark.asyncio
async def test_ledger_side_duplicate_check():
    ledger = InMemoryLedger()
    node, _ = _node(ledger)
    state = {"messages": [calls(("create_purchase", RECEIPT))], "confirmed": True}

    first = _outcomes(await node(state))[0]
    second = _outcomes(await node(state))[0]

    assert first["created"] == second["created"]
    assert second["duplicate_prevented"]
    assert ledger.count("create_purchase") == 1


@pytest.mark.asyncio
async def test_upload_to_entity_created_in_task_needs_no_consent():
    ledger = InMemoryLedger()
    node, _ = _node(ledger, files=[{"name": "kvittering.jpg", "type": "image/jpeg", "data": b"x"}])
    created = CreationFact(entity_type="purchase", identifier=7, action="create_purchase", worker_id="purchase_agent")

    update = await node({
        "messages": [calls(("upload_attachment", {"entity_type": "purchase", "entity_id": 7}))],
        "known_creations": [created],
    })

    outcome = _outcomes(update)[0]
    assert outcome["success"]
    assert outcome["uploaded"] == ["kvittering.jpg"]
    assert ledger.count("add_attachment") == 1


@pytest.mark.asyncio
async def test_upload_to_unknown_entity_is_proposed():
    ledger = InMemoryLedger()
    node, _ = _node(ledger, files=[{"name": "kvittering.jpg", "type": "image/jpeg", "data": b"x"}])

    update = await node({"messages": [calls(("upload_attachment", {"entity_type": "purchase", "entity_id": 7}))]})

    assert _outcomes(update)[0]["requires_confirmation"]
    assert ledger.count("add_attachment") == 0


@pytest.mark.asyncio
async def test_read_actions_and_unknown_actions():
    ledger = InMemoryLedger()
    node, _ = _node(ledger)

    update = await node({"messages": [calls(("search_purchases", {}), ("delete_everything", {}))]})

    found, unknown = _outcomes(update)
    assert found["success"]
    assert not unknown["success"]
    assert "delete_everything" in unknown["error"]
