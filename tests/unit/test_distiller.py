"""Tests for the context distiller."""

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from ledgerAgent.transcript.distiller import (
    ATTACHMENTS_CAPABILITY,
    distill,
    distill_messages,
    is_distilled,
    render_record,
)
from ledgerAgent.transcript.records import dump_outcome, proposal, success
from ledgerAgent.transcript.transcript import Transcript

IMAGE = {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}


def _purchase_run():
    call = AIMessage(
        content="",
        name="purchase_agent",
        tool_calls=[{"name": "create_purchase", "args": {"description": "Papir"}, "id": "c1", "type": "tool_call"}],
    )
    result = ToolMessage(
        content=dump_outcome(success("Kjøp registrert (ID 7)", created={"purchase": 7}, purchase_id=7)),
        tool_call_id="c1",
        name="create_purchase",
    )
    return [call, result]


def _transcript():
    return Transcript().append(
        HumanMessage(content=[{"type": "text", "text": "Registrer kvitteringen"}, IMAGE]),
        *_purchase_run(),
        AIMessage(content="Kjøpet er registrert.", name="coordinator"),
        HumanMessage(content="   "),
    )


def test_action_run_collapses_to_one_entry():
    distilled = distill_messages(list(_transcript().messages))

    assert not any(isinstance(m, ToolMessage) for m in distilled)
    assert not any(isinstance(m, AIMessage) and m.tool_calls for m in distilled)
    entries = [m for m in distilled if is_distilled(m)]
    assert len(entries) == 1
    assert "create_purchase ✓" in entries[0].content
    assert "purchase_id=7" in entries[0].content
    assert "fullført, skal ikke gjentas" in entries[0].content


def test_empty_turns_are_dropped():
    distilled = distill_messages(list(_transcript().messages))
    assert all(str(m.content).strip() for m in distilled)
    assert len(distilled) == 3


def test_attachment_parts_only_for_capable_recipients():
    plain = distill_messages(list(_transcript().messages))
    capable = distill_messages(list(_transcript().messages), (ATTACHMENTS_CAPABILITY,))

    assert plain[0].content == "Registrer kvitteringen"
    assert isinstance(capable[0].content, list)
    assert IMAGE in capable[0].content


def test_distillation_is_idempotent():
    for capabilities in ((), (ATTACHMENTS_CAPABILITY,)):
        once = distill(_transcript(), capabilities)
        twice = distill(once, capabilities)
        assert [m.content for m in once.messages] == [m.content for m in twice.messages]
        assert [type(m) for m in once.messages] == [type(m) for m in twice.messages]


def test_distill_keeps_task_and_version():
    transcript = _transcript()
    distilled = distill(transcript)
    assert distilled.task_id == transcript.task_id
    assert distilled.version == transcript.version


def test_unanswered_tool_calls_are_removed():
    messages = [
        HumanMessage(content="Hei"),
        AIMessage(content="", tool_calls=[{"name": "search_purchases", "args": {}, "id": "x", "type": "tool_call"}]),
    ]
    assert distill_messages(messages) == [messages[0]]


def test_narration_on_a_call_is_kept_as_plain_turn():
    call = AIMessage(
        content="Jeg sjekker banken.",
        tool_calls=[{"name": "find_bank_matches", "args": {}, "id": "b1", "type": "tool_call"}],
    )
    result = ToolMessage(content=dump_outcome(success("0 mulige banktransaksjoner")), tool_call_id="b1")
    distilled = distill_messages([call, result])
    assert distilled[0].content == "Jeg sjekker banken."
    assert is_distilled(distilled[1])


def test_proposals_are_marked_as_waiting():
    line = render_record("create_purchase", dump_outcome(proposal("create_purchase", {"a": 1}, "Registrere kjøp")))
    assert "venter på bekreftelse" in line
    assert "✗" in line


def test_record_without_content_is_skipped():
    assert render_record("search_purchases", dump_outcome({"success": True})) is None


def test_system_messages_pass_through():
    system = SystemMessage(content="regler")
    assert distill_messages([system]) == [system]
