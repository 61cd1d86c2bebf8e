"""Facts derived from raw action records: what exists, what awaits consent.

The coordinator reads these from the full transcript; workers receive them
as structured fields on the delegation request, since the text they see has
already been distilled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from ledgerAgent.transcript.records import ActionOutcome, call_key
from ledgerAgent.transcript.transcript import is_action_message


@dataclass(frozen=True)
class CreationFact:
    """An entity created (or found to already exist) during the task."""

    entity_type: str
    identifier: Any
    action: str = ""
    worker_id: Optional[str] = None
    intent: Optional[str] = None

    def describe(self) -> str:
        return f"{self.entity_type} ID {self.identifier}"


@dataclass(frozen=True)
class PendingProposal:
    """A side-effecting action a worker proposed and the user has not yet confirmed."""

    worker_id: Optional[str]
    action: str
    summary: str
    args: Dict[str, Any] = field(default_factory=dict)


def _call_index(messages: Iterable[BaseMessage]) -> Dict[str, Tuple[str, Optional[str], Dict[str, Any]]]:
    """tool_call_id -> (action name, issuing worker, args)"""
    index: Dict[str, Tuple[str, Optional[str], Dict[str, Any]]] = {}
    for message in messages:
        if isinstance(message, AIMessage):
            for call in message.tool_calls or []:
                if call.get("id"):
                    index[call["id"]] = (call.get("name", ""), message.name, dict(call.get("args") or {}))
    return index


def index_creations(messages: Sequence[BaseMessage]) -> List[CreationFact]:
    """Every entity the action records report as created, oldest first."""
    calls = _call_index(messages)
    facts: List[CreationFact] = []
    seen = set()
    for message in messages:
        if not isinstance(message, ToolMessage):
            continue
        outcome = ActionOutcome.parse(message.content)
        if not outcome.created:
            continue
        action, worker_id, _ = calls.get(message.tool_call_id, (message.name or "", None, {}))
        for entity_type, identifier in outcome.created.items():
            key = (entity_type, str(identifier), outcome.intent)
            if key in seen:
                continue
            seen.add(key)
            facts.append(CreationFact(
                entity_type=entity_type,
                identifier=identifier,
                action=action,
                worker_id=worker_id,
                intent=outcome.intent,
            ))
    # A delegation outcome repeats its worker's creations without an intent
    with_intent = {(f.entity_type, str(f.identifier)) for f in facts if f.intent}
    return [f for f in facts if f.intent or (f.entity_type, str(f.identifier)) not in with_intent]


def find_by_intent(facts: Iterable[CreationFact], intent: Optional[str]) -> Optional[CreationFact]:
    if not intent:
        return None
    for fact in facts:
        if fact.intent == intent:
            return fact
    return None


def latest_action_run(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """The action records answering the most recent request.

    Scans backwards from the latest user turn (or the end, when the
    transcript does not end on one), skipping plain assistant replies, and
    collects the contiguous action messages found there.
    """
    end = len(messages)
    if messages and isinstance(messages[-1], HumanMessage):
        end -= 1

    i = end - 1
    while i >= 0 and isinstance(messages[i], AIMessage) and not messages[i].tool_calls:
        i -= 1

    run: List[BaseMessage] = []
    while i >= 0 and is_action_message(messages[i]):
        run.append(messages[i])
        i -= 1
    run.reverse()
    return run


def latest_creations(messages: Sequence[BaseMessage]) -> List[CreationFact]:
    return index_creations(latest_action_run(messages))


def pending_proposals(messages: Sequence[BaseMessage]) -> List[PendingProposal]:
    """Proposals from the latest action run that were never carried out.

    A proposal counts as carried out only when a call with the same action
    and the same normalised arguments succeeded in that run; a replayed
    proposal followed by a new one leaves the new one pending.
    """
    run = latest_action_run(messages)
    calls = _call_index(run)
    proposals: List[PendingProposal] = []
    done = set()
    for message in run:
        if not isinstance(message, ToolMessage):
            continue
        outcome = ActionOutcome.parse(message.content)
        action, worker_id, args = calls.get(message.tool_call_id, (message.name or "", None, {}))
        if outcome.requires_confirmation:
            proposal = outcome.proposal or {}
            proposals.append(PendingProposal(
                worker_id=worker_id,
                action=str(proposal.get("action") or action),
                summary=outcome.message,
                args=dict(proposal.get("args") or args),
            ))
        elif outcome.success:
            done.add(call_key(action, args))
    return [p for p in proposals if call_key(p.action, p.args) not in done]
