"""Coordinator: the only party the user talks to.

Per user turn:

    START → refuse                       (destructive / broad turns)
    START → dispatch → END               (acknowledgements, upload-only follow-ups)
    START → planner ⇄ actions → respond → END
               ↓
              END

- refuse: answers with the policy question, nothing is delegated
- dispatch: deterministic delegation decided from the transcript's facts
- planner: the decision step, choosing workers through ``delegate_to_*``
- actions: runs the delegation calls
- respond: relays worker questions and proposals verbatim

Only the workers' action records and the final reply are appended to the
task transcript; the planner's own tool calls stay in the turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, START, StateGraph

from ledgerAgent.agents.factory import invoke_decider
from ledgerAgent.config.settings import Settings
from ledgerAgent.coordinator.policy import PolicyChecker, PolicyDecision, TurnKind
from ledgerAgent.coordinator.session import TaskSession
from ledgerAgent.coordinator.state import CoordinatorState
from ledgerAgent.delegation.channel import COORDINATOR_ID, DelegationChannel, DelegationRequest, DelegationResponse
from ledgerAgent.delegation.tools import create_delegation_tools
from ledgerAgent.transcript.creations import CreationFact, index_creations, latest_creations, pending_proposals
from ledgerAgent.transcript.distiller import ATTACHMENTS_CAPABILITY, distill_messages
from ledgerAgent.transcript.journal import ActionJournal
from ledgerAgent.transcript.records import ActionOutcome
from ledgerAgent.transcript.transcript import Transcript
from ledgerAgent.utils.error_handler import with_error_boundary
from ledgerAgent.utils.logging_utils import (
    log_agent_response,
    log_node_entry,
    log_node_exit,
    log_policy_decision,
    log_routing_decision,
    log_user_message,
)
from ledgerAgent.utils.message_utils import stringify_content, truncate_messages_safely
from ledgerAgent.workers.action_node import ActionNode
from ledgerAgent.workers.prompts import PromptBuilder

LOGGER = logging.getLogger(__name__)

USER_ID = "user"
ATTACHABLE_TYPES = ("purchase", "invoice", "sale", "offer", "journal_entry")

TIMEOUT_REPLY = (
    "Det tok for lang tid å fullføre forespørselen. Det som ble gjort før stoppet er tatt vare på. "
    "Si fra om jeg skal fortsette."
)
LOOP_LIMIT_REPLY = "Jeg kom ikke i mål innen grensen for antall steg. Kan du dele opp forespørselen?"
ALREADY_SENT = "Vedleggene i denne meldingen er allerede sendt til denne spesialisten. Vent på svaret derfra."


@dataclass
class TurnResult:
    """Outcome of one user turn.

    Attributes:
        reply: text shown to the user
        session: the next session (new transcript version, same relay unless files arrived)
        records: action records appended to the transcript this turn
        delegations: worker ids delegated to, in order
    """

    reply: str
    session: TaskSession
    records: List[BaseMessage] = field(default_factory=list)
    delegations: List[str] = field(default_factory=list)
    needs_input: bool = False
    awaiting_confirmation: bool = False
    timed_out: bool = False


@dataclass(frozen=True)
class Dispatch:
    """A delegation decided without the decision step."""

    target_id: str
    task: str
    context: Dict[str, Any] = field(default_factory=dict)
    confirmed: bool = False
    confirmed_actions: tuple = ()


Listener = Callable[[str, Dict[str, Any]], None]


# ========== Reply helpers ==========

def relay_reply(messages: Sequence[Any]) -> str:
    """Combine the latest delegation outcomes: completed work first, then questions and proposals."""
    done: List[str] = []
    waiting: List[str] = []
    for message in messages:
        if not isinstance(message, ToolMessage):
            continue
        outcome = ActionOutcome.parse(message.content)
        raw = outcome.raw
        if raw.get("needs_input") and outcome.question:
            text = outcome.question
            target = waiting
        elif raw.get("awaiting_confirmation"):
            text = outcome.message
            target = waiting
        elif outcome.success and outcome.message:
            text = outcome.message
            target = done
        else:
            continue
        if text and text not in done and text not in waiting:
            target.append(text)
    return "\n\n".join(done + waiting)


def dispatch_reply(response: DelegationResponse) -> str:
    if response.success or response.needs_input or response.awaiting_confirmation:
        return response.text or "Ferdig."
    return f"{response.error or 'Oppgaven ble ikke fullført.'} Vil du at jeg prøver igjen, eller skal vi gjøre det på en annen måte?"


# ========== Coordinator ==========

class Coordinator:
    """Routes user turns to workers and composes the reply."""

    def __init__(
        self,
        registry,
        channel: DelegationChannel,
        model,
        settings: Settings,
        policy: Optional[PolicyChecker] = None,
    ):
        """
        Args:
            registry: WorkerRegistry with the enabled workers
            channel: DelegationChannel used for every delegation
            model: chat model for the planner (supports ``bind_tools``)
            settings: application settings
            policy: turn policy (defaults to the configured rules)
        """
        self.registry = registry
        self.channel = channel
        self.model = model
        self.settings = settings
        self.policy = policy or PolicyChecker()

    async def handle_turn(
        self,
        session: TaskSession,
        text: str,
        files: Optional[Sequence[Any]] = None,
        supersede: bool = False,
        listener: Optional[Listener] = None,
    ) -> TurnResult:
        """Handle one user turn.

        Args:
            session: current task session
            text: the user's message
            files: files sent with this message (dicts with name/type/data)
            supersede: replace the task's files instead of adding to them
            listener: optional callback receiving (event_type, data) while the turn runs

        Returns:
            TurnResult with the reply and the next session
        """
        log_user_message(LOGGER, text)
        emit = listener or (lambda event, data: None)

        relay = session.relay.offer(files, supersede=supersede)
        new_ordinals = [a.ordinal for a in relay.newest(len(files))] if files else []
        transcript = session.transcript.append(self._user_message(text, relay, new_ordinals))

        decision = self.policy.classify(text)
        log_policy_decision(LOGGER, decision.kind.value, decision.reason)
        dispatches = [] if decision.blocks_delegation else self._plan_dispatches(decision, transcript, text, new_ordinals)

        journal = ActionJournal()
        delegations: List[str] = []
        parent = DelegationRequest(
            origin_id=USER_ID,
            target_id=COORDINATOR_ID,
            task=text,
            transcript=transcript,
            attachments=relay,
            known_creations=tuple(index_creations(transcript.messages)),
        )

        sent_with_files: Set[str] = set()

        def prepare(request: DelegationRequest) -> Union[DelegationRequest, DelegationResponse]:
            if new_ordinals:
                if request.target_id in sent_with_files:
                    LOGGER.info(f"Second delegation to {request.target_id} on an attachment turn refused")
                    return DelegationResponse.failed(request.target_id, ALREADY_SENT)
                sent_with_files.add(request.target_id)
                request = replace(request, context={**request.context, "new_files": list(new_ordinals)})
            emit("action_call", {"worker": request.target_id, "task": request.task})
            return request

        def on_response(request: DelegationRequest, response: DelegationResponse) -> None:
            delegations.append(response.responding_id)
            emit("action_result", {"worker": response.responding_id, "success": response.success, "text": response.text})
            if not response.success:
                emit("error", {"worker": response.responding_id, "message": response.text})

        tools = create_delegation_tools(
            COORDINATOR_ID, self.channel, self.registry, parent, journal,
            prepare=prepare, on_response=on_response,
        )
        graph = self._build_graph(tools, parent, dispatches, journal, prepare, on_response)

        state: CoordinatorState = {
            "messages": self._planner_messages(transcript, relay, new_ordinals),
            "loops": 0,
            "max_loops": self.settings.governance.max_coordinator_loops,
            "turn_kind": decision.kind.value,
            "policy_question": decision.question if decision.blocks_delegation else None,
            "dispatch": {"count": len(dispatches)} if dispatches else None,
            "known_creations": list(parent.known_creations),
            "proposals": [],
            "questions": [],
            "reply": None,
            "error": None,
        }

        timed_out = False
        final: Dict[str, Any] = dict(state)
        spoken: List[str] = []

        async def run_graph() -> None:
            nonlocal final
            shown = len(state["messages"])
            config = {"recursion_limit": state["max_loops"] * 3 + 10}
            async for snapshot in graph.astream(state, config=config, stream_mode="values"):
                messages = snapshot.get("messages") or []
                for message in messages[shown:]:
                    fragment = self._spoken_text(message)
                    if fragment:
                        spoken.append(fragment)
                        emit("text", {"text": fragment})
                shown = len(messages)
                final = snapshot

        try:
            await asyncio.wait_for(run_graph(), timeout=self.settings.governance.request_timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning(f"Turn exceeded {self.settings.governance.request_timeout_seconds}s")
            emit("error", {"message": TIMEOUT_REPLY})
            final = {"reply": TIMEOUT_REPLY, "error": TIMEOUT_REPLY}
            timed_out = True

        reply = final.get("reply") or self._last_reply(final.get("messages") or []) or "Ferdig."
        log_agent_response(LOGGER, reply)
        if reply not in spoken:
            emit("text", {"text": reply})

        records = journal.messages()
        next_transcript = transcript.extend(records).append(AIMessage(content=reply, name=COORDINATOR_ID))
        needs_input, awaiting = self._waiting_state(records, final)
        return TurnResult(
            reply=reply,
            session=TaskSession(transcript=next_transcript, relay=relay),
            records=records,
            delegations=delegations,
            needs_input=needs_input,
            awaiting_confirmation=awaiting,
            timed_out=timed_out,
        )

    # ========== Policy-driven dispatch ==========

    def _plan_dispatches(
        self,
        decision: PolicyDecision,
        transcript: Transcript,
        text: str,
        new_ordinals: Sequence[int],
    ) -> List[Dispatch]:
        messages = list(transcript.messages)

        if decision.kind == TurnKind.ACKNOWLEDGEMENT and not new_ordinals:
            proposals = pending_proposals(messages)
            if proposals:
                by_worker: Dict[str, List[Any]] = {}
                for p in proposals:
                    if p.worker_id and self.registry.is_enabled(p.worker_id):
                        by_worker.setdefault(p.worker_id, []).append(p)
                dispatches = []
                for worker_id, items in by_worker.items():
                    listed = "\n".join(f"{i}. {p.summary}" for i, p in enumerate(items, 1))
                    dispatches.append(Dispatch(
                        target_id=worker_id,
                        task=f"Brukeren har bekreftet forslagene:\n{listed}\nGjennomfør dem nøyaktig som foreslått.",
                        context={"confirmed_proposals": [{"action": p.action, "args": p.args, "summary": p.summary} for p in items]},
                        confirmed=True,
                        confirmed_actions=tuple(sorted({p.action for p in items})),
                    ))
                if dispatches:
                    return dispatches

            created = [f for f in latest_creations(messages) if f.worker_id and self.registry.is_enabled(f.worker_id)]
            if created:
                worker_id = created[-1].worker_id
                facts = ", ".join(f.describe() for f in created if f.worker_id == worker_id)
                return [Dispatch(
                    target_id=worker_id,
                    task=(
                        f"Brukeren svarte «{text.strip()}». Allerede opprettet: {facts}. "
                        "Ikke opprett noe nytt. Fullfør det som eventuelt gjenstår for disse, ellers bekreft kort."
                    ),
                    context={"existing": [{"entity_type": f.entity_type, "id": f.identifier} for f in created]},
                )]

        if new_ordinals and self.policy.is_attachment_followup(text):
            targets = self._upload_targets(messages)
            if targets:
                worker_id = targets[-1].worker_id
                facts = ", ".join(f.describe() for f in targets if f.worker_id == worker_id)
                files = ", ".join(f"Fil {n}" for n in new_ordinals)
                return [Dispatch(
                    target_id=worker_id,
                    task=(
                        f"Last opp {files} til det som allerede er opprettet: {facts}. "
                        "Kun opplasting med upload_attachment, ikke opprett noe nytt."
                    ),
                    context={"upload_only": True, "new_files": list(new_ordinals)},
                )]
        return []

    def _upload_targets(self, messages: Sequence[BaseMessage]) -> List[CreationFact]:
        def attachable(facts: Sequence[CreationFact]) -> List[CreationFact]:
            return [
                f for f in facts
                if f.entity_type in ATTACHABLE_TYPES and f.worker_id and self.registry.is_enabled(f.worker_id)
            ]

        recent = attachable(latest_creations(messages))
        if recent:
            return recent
        earlier = attachable(index_creations(messages))
        return earlier[-1:]

    # ========== Messages ==========

    def _user_message(self, text: str, relay, new_ordinals: Sequence[int]) -> HumanMessage:
        if not new_ordinals:
            return HumanMessage(content=text)
        described = relay.describe(new_ordinals)
        parts: List[Dict[str, Any]] = [{"type": "text", "text": f"{text}\n\n{described}".strip()}]
        parts.extend(relay.content_parts(new_ordinals, limit=self.settings.accounting.max_vision_attachments))
        return HumanMessage(content=parts)

    def _directive(self, transcript: Transcript, new_ordinals: Sequence[int]) -> str:
        lines: List[str] = []
        created = index_creations(transcript.messages)
        if created:
            listed = ", ".join(f.describe() for f in created[-10:])
            lines.append(f"Allerede opprettet i denne oppgaven: {listed}. Bruk disse ID-ene, ikke opprett ny.")
        if new_ordinals:
            files = ", ".join(f"Fil {n}" for n in new_ordinals)
            lines.append(
                f"Brukeren har sendt nye filer ({files}). Deleger opprettelse og opplasting samlet, "
                "høyst én delegering per spesialist."
            )
        return "\n".join(lines)

    def _planner_messages(self, transcript: Transcript, relay, new_ordinals: Sequence[int]) -> List[BaseMessage]:
        system = SystemMessage(content=PromptBuilder.coordinator_prompt(
            catalog=self.registry.get_catalog_text(),
            attachments=relay.describe(),
            directive=self._directive(transcript, new_ordinals),
        ))
        history = distill_messages(list(transcript.messages), (ATTACHMENTS_CAPABILITY,))
        history = truncate_messages_safely(history, keep_recent=self.settings.governance.max_message_history)
        return [system, *history]

    @staticmethod
    def _spoken_text(message: BaseMessage) -> str:
        """Text the coordinator says to the user in a message, if any."""
        if not isinstance(message, AIMessage) or message.name != COORDINATOR_ID:
            return ""
        return stringify_content(message.content).strip()

    @staticmethod
    def _last_reply(messages: Sequence[BaseMessage]) -> str:
        for message in reversed(list(messages)):
            if isinstance(message, AIMessage) and not message.tool_calls:
                return stringify_content(message.content).strip()
        return ""

    @staticmethod
    def _waiting_state(records: Sequence[BaseMessage], final: Mapping[str, Any]) -> tuple:
        needs_input = bool(final.get("questions"))
        awaiting = bool(final.get("proposals"))
        for message in records:
            if isinstance(message, ToolMessage):
                outcome = ActionOutcome.parse(message.content)
                needs_input = needs_input or outcome.needs_input
                awaiting = awaiting or outcome.requires_confirmation
        return needs_input, awaiting

    # ========== Graph ==========

    def _build_graph(self, tools, parent: DelegationRequest, dispatches: Sequence[Dispatch], journal: ActionJournal, prepare, on_response):
        action_node = ActionNode([], passthrough_tools=tools, worker_id=COORDINATOR_ID)

        async def refuse_node(state: CoordinatorState) -> Dict[str, Any]:
            question = state.get("policy_question") or "Kan du si litt mer om hva du vil gjøre?"
            return {"messages": [AIMessage(content=question, name=COORDINATOR_ID)], "reply": question, "questions": [question]}

        async def dispatch_node(state: CoordinatorState) -> Dict[str, Any]:
            log_node_entry(LOGGER, "coordinator.dispatch", state)
            replies: List[str] = []
            questions: List[str] = []
            proposals: List[str] = []
            for item in dispatches:
                request = DelegationRequest(
                    origin_id=COORDINATOR_ID,
                    target_id=item.target_id,
                    task=item.task,
                    context=dict(item.context),
                    transcript=parent.transcript,
                    attachments=parent.attachments,
                    known_creations=tuple(parent.known_creations) + tuple(index_creations(journal.messages())),
                    confirmed=item.confirmed,
                    confirmed_actions=tuple(item.confirmed_actions),
                )
                prepared = prepare(request)
                if isinstance(prepared, DelegationResponse):
                    response = prepared
                    journal.extend(response.records)
                else:
                    response = await self.channel.send(prepared, journal=journal.child())
                on_response(request, response)
                if response.needs_input:
                    questions.append(response.text)
                if response.awaiting_confirmation:
                    proposals.append(response.text)
                reply = dispatch_reply(response)
                if reply not in replies:
                    replies.append(reply)
            text = "\n\n".join(replies)
            updates = {
                "messages": [AIMessage(content=text, name=COORDINATOR_ID)],
                "reply": text,
                "questions": questions,
                "proposals": proposals,
            }
            log_node_exit(LOGGER, "coordinator.dispatch", updates)
            return updates

        @with_error_boundary("coordinator.planner")
        async def planner_node(state: CoordinatorState) -> Dict[str, Any]:
            log_node_entry(LOGGER, "coordinator.planner", state)
            loops = state.get("loops", 0)
            if loops >= state.get("max_loops", 25):
                LOGGER.warning(f"Coordinator loop limit reached ({loops})")
                return {"messages": [AIMessage(content=LOOP_LIMIT_REPLY, name=COORDINATOR_ID)], "reply": LOOP_LIMIT_REPLY}

            response = await invoke_decider(self.model, tools, list(state["messages"]))
            if not isinstance(response, AIMessage):
                response = AIMessage(content=stringify_content(getattr(response, "content", response)))
            response = response.model_copy(update={"name": COORDINATOR_ID})
            updates: Dict[str, Any] = {"messages": [response], "loops": loops + 1}
            if not response.tool_calls:
                updates["reply"] = stringify_content(response.content).strip()
            log_node_exit(LOGGER, "coordinator.planner", updates)
            return updates

        async def respond_node(state: CoordinatorState) -> Dict[str, Any]:
            messages = list(state.get("messages") or [])
            start = len(messages)
            while start > 0 and isinstance(messages[start - 1], ToolMessage):
                start -= 1
            text = relay_reply(messages[start:])
            if not text:
                text = "\n\n".join(list(state.get("questions") or []) + list(state.get("proposals") or []))
            return {"messages": [AIMessage(content=text, name=COORDINATOR_ID)], "reply": text}

        def start_route(state: CoordinatorState) -> str:
            if state.get("policy_question"):
                decision, reason = "refuse", f"Policy: {state.get('turn_kind')}"
            elif state.get("dispatch"):
                decision, reason = "dispatch", "Decided from transcript facts"
            else:
                decision, reason = "planner", "Routed by the decision step"
            log_routing_decision(LOGGER, "start", decision, reason)
            return decision

        def planner_route(state: CoordinatorState) -> str:
            last = state["messages"][-1]
            if isinstance(last, AIMessage) and last.tool_calls and not state.get("reply"):
                decision = "actions"
            else:
                decision = END
            log_routing_decision(LOGGER, "coordinator.planner", str(decision))
            return decision

        def actions_route(state: CoordinatorState) -> str:
            decision = "respond" if state.get("questions") or state.get("proposals") else "planner"
            log_routing_decision(LOGGER, "coordinator.actions", decision)
            return decision

        graph = StateGraph(CoordinatorState)
        graph.add_node("refuse", refuse_node)
        graph.add_node("dispatch", dispatch_node)
        graph.add_node("planner", planner_node)
        graph.add_node("actions", action_node)
        graph.add_node("respond", respond_node)

        graph.add_conditional_edges(START, start_route, {"refuse": "refuse", "dispatch": "dispatch", "planner": "planner"})
        graph.add_edge("refuse", END)
        graph.add_edge("dispatch", END)
        graph.add_conditional_edges("planner", planner_route, {"actions": "actions", END: END})
        graph.add_conditional_edges("actions", actions_route, {"respond": "respond", "planner": "planner"})
        graph.add_edge("respond", END)
        return graph.compile()
