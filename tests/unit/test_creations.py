"""Tests for action records, the creation index and pending proposals."""

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from ledgerAgent.transcript.creations import (
    find_by_intent,
    index_creations,
    latest_action_run,
    latest_creations,
    pending_proposals,
)
from ledgerAgent.transcript.records import (
    ActionOutcome,
    clarification,
    duplicate_noop,
    dump_outcome,
    extract_identifiers,
    proposal,
    success,
)
from ledgerAgent.transcript.transcript import Transcript, is_action_message


def _record(worker, name, args, outcome, call_id):
    call = AIMessage(content="", name=worker, tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"}])
    return [call, ToolMessage(content=dump_outcome(outcome), tool_call_id=call_id, name=name)]


def test_outcome_parse_reads_the_shared_vocabulary():
    outcome = ActionOutcome.parse(dump_outcome({**success("ok", created={"purchase": 3}), "intent": "k"}))
    assert outcome.success
    assert outcome.created == {"purchase": 3}
    assert outcome.completed
    assert outcome.intent == "k"

    question = ActionOutcome.parse(dump_outcome(clarification("Hvilken konto?")))
    assert question.needs_input
    assert question.question == "Hvilken konto?"

    waiting = ActionOutcome.parse(dump_outcome(proposal("create_purchase", {"x": 1}, "Registrere")))
    assert waiting.requires_confirmation
    assert waiting.proposal == {"action": "create_purchase", "args": {"x": 1}}


def test_identifiers_ignore_proposal_arguments():
    payload = {"proposal": {"args": {"supplier_id": 9}}, "purchase": {"purchase_id": 4}, "contact_id": 2}
    assert extract_identifiers(payload) == {"contact_id": 2, "purchase_id": 4}


def test_index_creations_names_the_issuing_worker():
    messages = [HumanMessage(content="Registrer")]
    messages += _record("purchase_agent", "create_purchase", {}, {**success("ok", created={"purchase": 11}), "intent": "i1"}, "c1")
    facts = index_creations(messages)
    assert len(facts) == 1
    assert facts[0].entity_type == "purchase"
    assert facts[0].identifier == 11
    assert facts[0].worker_id == "purchase_agent"
    assert find_by_intent(facts, "i1") is facts[0]
    assert find_by_intent(facts, None) is None


def test_delegation_echo_does_not_duplicate_a_fact():
    messages = _record("purchase_agent", "create_purchase", {}, {**success("ok", created={"purchase": 5}), "intent": "i"}, "c1")
    messages += _record("coordinator", "delegate_to_purchase_agent", {"task": "x"}, success("ok", created={"purchase": 5}), "d1")
    assert [f.identifier for f in index_creations(messages)] == [5]


def test_duplicate_noop_reports_the_existing_entity():
    messages = _record("purchase_agent", "create_purchase", {}, duplicate_noop("purchase", 8), "c1")
    facts = index_creations(messages)
    assert facts[0].identifier == 8


def test_latest_action_run_skips_reply_and_new_user_turn():
    older = _record("purchase_agent", "create_purchase", {}, success("ok", created={"purchase": 1}), "old")
    newer = _record("purchase_agent", "create_purchase", {}, success("ok", created={"purchase": 2}), "new")
    messages = [
        HumanMessage(content="første"), *older, AIMessage(content="Ferdig"),
        HumanMessage(content="andre"), *newer, AIMessage(content="Ferdig"),
        HumanMessage(content="ja"),
    ]
    run = latest_action_run(messages)
    assert run == newer
    assert [f.identifier for f in latest_creations(messages)] == [2]


def test_latest_action_run_is_empty_after_plain_exchange():
    messages = [HumanMessage(content="hei"), AIMessage(content="Hei!"), HumanMessage(content="ok")]
    assert latest_action_run(messages) == []


def test_pending_proposals_carry_worker_and_args():
    args = {"date": "2026-10-01", "description": "Papir"}
    messages = [HumanMessage(content="Registrer")]
    messages += _record("purchase_agent", "create_purchase", args, proposal("create_purchase", args, "Registrere kjøp"), "p1")
    messages += [AIMessage(content="Skal jeg gjennomføre dette?"), HumanMessage(content="ja")]

    pending = pending_proposals(messages)
    assert len(pending) == 1
    assert pending[0].worker_id == "purchase_agent"
    assert pending[0].action == "create_purchase"
    assert pending[0].args == args
    assert pending[0].summary == "Registrere kjøp"


def test_carried_out_proposals_are_not_pending():
    args = {"description": "Papir"}
    messages = _record("purchase_agent", "create_purchase", args, proposal("create_purchase", args, "Registrere"), "p1")
    messages += _record("purchase_agent", "create_purchase", args, success("ok", created={"purchase": 3}), "p2")
    assert pending_proposals(messages) == []


def test_new_proposal_after_a_replayed_one_stays_pending():
    first = {"date": "2026-10-01", "description": "Papir"}
    second = {"date": "2026-10-02", "description": "Toner"}
    messages = [HumanMessage(content="ja")]
    messages += _record("purchase_agent", "create_purchase", first, success("ok", created={"purchase": 1}), "replay_1")
    messages += _record("purchase_agent", "create_purchase", second, proposal("create_purchase", second, "Registrere toner"), "p2")
    messages += [AIMessage(content="Skal jeg gjennomføre dette?"), HumanMessage(content="ja")]

    pending = pending_proposals(messages)

    assert [p.args for p in pending] == [second]
    assert pending[0].summary == "Registrere toner"


def test_transcript_append_returns_next_version():
    first = Transcript()
    second = first.append(HumanMessage(content="hei"))
    assert len(first) == 0
    assert second.version == first.version + 1
    assert second.task_id == first.task_id
    assert second.last_user_text() == "hei"
    assert first.append() is first


def test_is_action_message():
    call, result = _record("w", "a", {}, success("ok"), "c")
    assert is_action_message(call)
    assert is_action_message(result)
    assert not is_action_message(AIMessage(content="svar"))
