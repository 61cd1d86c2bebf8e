"""Tests for the delegation channel and the delegation tools."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from ledgerAgent.delegation import tools as delegation_tools
from ledgerAgent.delegation.channel import COORDINATOR_ID, DelegationChannel, DelegationRequest, DelegationResponse
from ledgerAgent.transcript.distiller import is_distilled
from ledgerAgent.transcript.journal import ActionJournal
from ledgerAgent.transcript.records import dump_outcome, success
from ledgerAgent.transcript.transcript import Transcript
from ledgerAgent.utils.error_handler import SelfDelegationError
from ledgerAgent.workers.registry import WorkerRegistry
from ledgerAgent.workers.schema import WorkerCapability, WorkerCard


@dataclass
class FakeResult:
    reply: str
    success: bool = True
    error: Any = None
    records: Tuple[Any, ...] = ()
    needs_input: bool = False
    awaiting_confirmation: bool = False
    created: Dict[str, Any] = field(default_factory=dict)
    operation_complete: bool = False


class FakeWorker:
    def __init__(self, result=None, delay: float = 0.0, error: Exception = None):
        self.result = result or FakeResult(reply="Gjort.")
        self.delay = delay
        self.error = error
        self.received = []

    async def run(self, request, channel, journal=None):
        self.received.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _registry(**workers):
    registry = WorkerRegistry()
    for worker_id, instance in workers.items():
        capabilities = [WorkerCapability(name="attachments")] if worker_id == "purchase_agent" else []
        registry.register_discovered(WorkerCard(id=worker_id, name=worker_id, description="", capabilities=capabilities))
        registry.enable_worker(worker_id)
        registry.register_instance(worker_id, instance)
    return registry


def _transcript():
    call = AIMessage(content="", name="purchase_agent", tool_calls=[{"name": "create_purchase", "args": {}, "id": "c1", "type": "tool_call"}])
    result = ToolMessage(content=dump_outcome(success("Kjøp registrert", created={"purchase": 2})), tool_call_id="c1", name="create_purchase")
    return Transcript().append(HumanMessage(content="Registrer kjøpet"), call, result)


def test_self_delegation_is_rejected_at_construction():
    with pytest.raises(SelfDelegationError):
        DelegationRequest(origin_id="purchase_agent", target_id="purchase_agent", task="x")
    with pytest.raises(ValueError):
        DelegationRequest(origin_id=COORDINATOR_ID, target_id=COORDINATOR_ID, task="x")


@pytest.mark.asyncio
async def test_worker_receives_distilled_transcript_and_call_stack():
    worker = FakeWorker()
    channel = DelegationChannel(_registry(purchase_agent=worker))

    response = await channel.send(DelegationRequest(
        origin_id=COORDINATOR_ID, target_id="purchase_agent", task="Registrer", transcript=_transcript(),
    ))

    assert response.success
    assert response.responding_id == "purchase_agent"
    assert response.text == "Gjort."
    delivered = worker.received[0]
    assert delivered.call_stack == ("purchase_agent",)
    assert not any(isinstance(m, ToolMessage) for m in delivered.transcript.messages)
    assert any(is_distilled(m) for m in delivered.transcript.messages)


@pytest.mark.asyncio
async def test_unknown_target_is_a_failed_response():
    channel = DelegationChannel(_registry())
    response = await channel.send(DelegationRequest(origin_id=COORDINATOR_ID, target_id="payroll_agent", task="x"))
    assert not response.success
    assert response.responding_id == "payroll_agent"
    assert "payroll_agent" not in response.text


@pytest.mark.asyncio
async def test_cycles_are_stopped():
    worker = FakeWorker()
    channel = DelegationChannel(_registry(purchase_agent=worker, contact_agent=FakeWorker()))

    response = await channel.send(DelegationRequest(
        origin_id="contact_agent", target_id="purchase_agent", task="x",
        call_stack=("purchase_agent", "contact_agent"),
    ))

    assert not response.success
    assert "i ring" in response.error
    assert worker.received == []


@pytest.mark.asyncio
async def test_depth_limit():
    worker = FakeWorker()
    channel = DelegationChannel(_registry(bank_agent=worker, a=FakeWorker(), b=FakeWorker()), max_depth=2)

    response = await channel.send(DelegationRequest(origin_id="b", target_id="bank_agent", task="x", call_stack=("a", "b")))

    assert not response.success
    assert worker.received == []


@pytest.mark.asyncio
async def test_timeout_becomes_a_failed_response():
    channel = DelegationChannel(_registry(bank_agent=FakeWorker(delay=1.0)), timeout_seconds=0.01)
    response = await channel.send(DelegationRequest(origin_id=COORDINATOR_ID, target_id="bank_agent", task="x"))
    assert not response.success
    assert "for lang tid" in response.error


class JournalingWorker:
    """Records one creation in the journal, then hangs."""

    async def run(self, request, channel, journal=None):
        call = AIMessage(content="", name="invoice_agent", tool_calls=[{"name": "create_invoice", "args": {"customer_id": 4}, "id": "i1", "type": "tool_call"}])
        journal.begin(call)
        journal.record(ToolMessage(content=dump_outcome(success("Faktura opprettet", created={"invoice": 21})), tool_call_id="i1", name="create_invoice"))
        await asyncio.sleep(1.0)


@pytest.mark.asyncio
async def test_timeout_keeps_what_the_worker_already_did():
    channel = DelegationChannel(_registry(invoice_agent=JournalingWorker()), timeout_seconds=0.05)
    journal = ActionJournal()

    response = await channel.send(DelegationRequest(origin_id=COORDINATOR_ID, target_id="invoice_agent", task="x"), journal=journal)

    assert not response.success
    assert response.created == {"invoice": 21}
    assert [m.type for m in response.records] == ["ai", "tool"]
    assert journal.messages() == list(response.records)


@pytest.mark.asyncio
async def test_worker_exception_never_escapes():
    channel = DelegationChannel(_registry(bank_agent=FakeWorker(error=RuntimeError("boom"))))
    response = await channel.send(DelegationRequest(origin_id=COORDINATOR_ID, target_id="bank_agent", task="x"))
    assert not response.success
    assert response.error


@pytest.mark.asyncio
async def test_malformed_result_is_rejected():
    channel = DelegationChannel(_registry(bank_agent=FakeWorker(result=object())))
    response = await channel.send(DelegationRequest(origin_id=COORDINATOR_ID, target_id="bank_agent", task="x"))
    assert not response.success


def test_no_delegation_tool_for_the_origin():
    registry = _registry(purchase_agent=FakeWorker(), contact_agent=FakeWorker(), bank_agent=FakeWorker())
    parent = DelegationRequest(origin_id=COORDINATOR_ID, target_id="purchase_agent", task="x")
    tools = delegation_tools.create_delegation_tools("purchase_agent", DelegationChannel(registry), registry, parent)
    names = sorted(t.name for t in tools)
    assert names == ["delegate_to_bank_agent", "delegate_to_contact_agent"]


@pytest.mark.asyncio
async def test_delegation_tool_records_worker_actions():
    records = (
        AIMessage(content="", name="contact_agent", tool_calls=[{"name": "create_contact", "args": {}, "id": "k1", "type": "tool_call"}]),
        ToolMessage(content=dump_outcome(success("Kontakt opprettet", created={"contact": 5})), tool_call_id="k1", name="create_contact"),
    )
    contact = FakeWorker(FakeResult(reply="Kontakt opprettet (ID 5)", records=records, created={"contact": 5}, operation_complete=True))
    registry = _registry(purchase_agent=FakeWorker(), contact_agent=contact)
    parent = DelegationRequest(origin_id=COORDINATOR_ID, target_id="purchase_agent", task="x", call_stack=("purchase_agent",))
    journal = ActionJournal()
    tools = delegation_tools.create_delegation_tools("purchase_agent", DelegationChannel(registry), registry, parent, journal)

    outcome = await tools[0].ainvoke({"task": "Opprett leverandøren Clas Ohlson"})

    assert tools[0].name == "delegate_to_contact_agent"
    assert outcome["success"]
    assert outcome["created"] == {"contact": 5}
    assert outcome["operation_complete"]
    assert journal.messages() == list(records)
    assert contact.received[0].call_stack == ("purchase_agent", "contact_agent")
    assert contact.received[0].origin_id == "purchase_agent"


def test_response_outcome_marks_questions_and_proposals():
    asking = delegation_tools.response_outcome(DelegationResponse(success=True, responding_id="a", result="Hvilken dato?", needs_input=True))
    assert asking["question"] == "Hvilken dato?"
    waiting = delegation_tools.response_outcome(DelegationResponse(success=True, responding_id="a", result="Forslag", awaiting_confirmation=True))
    assert waiting["awaiting_confirmation"]
    assert waiting["message"] == "Forslag"
