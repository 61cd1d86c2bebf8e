"""Worker: one specialist's bounded action loop.

Graph (compiled per delegation, since the action set is bound to the
request's attachments and call chain):

    START → replay → actions                   (confirmed proposals)
    START → agent ⇄ actions → respond → END    (questions / proposals)
              ↓
             END

- replay: executes the proposals the user confirmed, exactly as proposed
- agent: the decision step; may call actions or delegate
- actions: gated execution (consent, duplicate protection, one correction)
- respond: deterministic reply listing questions and proposals
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, START, StateGraph

from ledgerAgent.accounting.rules import vat_clarification, vat_question_answered
from ledgerAgent.agents.factory import invoke_decider
from ledgerAgent.attachments.relay import AttachmentRelay
from ledgerAgent.config.settings import Settings
from ledgerAgent.delegation.channel import DelegationRequest
from ledgerAgent.delegation.tools import create_delegation_tools
from ledgerAgent.transcript.creations import index_creations
from ledgerAgent.transcript.distiller import ATTACHMENTS_CAPABILITY, is_distilled
from ledgerAgent.transcript.journal import ActionJournal
from ledgerAgent.transcript.records import ActionOutcome
from ledgerAgent.transcript.transcript import Transcript, is_action_message
from ledgerAgent.utils.error_handler import with_error_boundary
from ledgerAgent.utils.logging_utils import log_node_entry, log_node_exit, log_routing_decision
from ledgerAgent.utils.message_utils import stringify_content, truncate_messages_safely
from ledgerAgent.workers.action_node import ActionNode
from ledgerAgent.workers.actions import ActionContext, ActionSpec
from ledgerAgent.workers.prompts import PromptBuilder
from ledgerAgent.workers.schema import WorkerCard
from ledgerAgent.workers.state import WorkerState

LOGGER = logging.getLogger(__name__)

LOOP_LIMIT_REPLY = "Jeg klarte ikke å fullføre oppgaven innen grensen for antall steg. Si gjerne hva jeg skal prioritere."


# ========== Clarifiers ==========

def _dialogue(transcript: Transcript) -> List[Tuple[str, str]]:
    turns: List[Tuple[str, str]] = []
    for message in transcript:
        if isinstance(message, HumanMessage):
            turns.append(("user", stringify_content(message.content)))
        elif isinstance(message, AIMessage) and not message.tool_calls and not is_distilled(message):
            turns.append(("assistant", stringify_content(message.content)))
    return turns


def clarify_vat_treatment(request: DelegationRequest) -> Optional[str]:
    """One VAT question when an amount's VAT treatment is not settled anywhere."""
    transcript = request.transcript
    if vat_question_answered(_dialogue(transcript)):
        return None
    amount_texts = [request.task, transcript.last_user_text()]
    return vat_clarification(amount_texts, transcript.user_texts(), request.context)


CLARIFIERS: Dict[str, Callable[[DelegationRequest], Optional[str]]] = {
    "vat_treatment": clarify_vat_treatment,
}


# ========== Result ==========

@dataclass
class WorkerResult:
    """What a worker hands back through the channel.

    Attributes:
        reply: text for the delegating party
        records: action records of this run (nested delegations first)
        created: latest identifier per entity type created in this run
    """

    worker_id: str
    reply: str
    records: List[BaseMessage] = field(default_factory=list)
    needs_input: bool = False
    awaiting_confirmation: bool = False
    success: bool = True
    error: Optional[str] = None
    created: Dict[str, Any] = field(default_factory=dict)
    operation_complete: bool = False


def _format_reply(questions: Sequence[str], proposals: Sequence[str]) -> str:
    parts: List[str] = []
    unique_questions: List[str] = []
    for question in questions:
        if question not in unique_questions:
            unique_questions.append(question)
    if unique_questions:
        parts.append("\n".join(unique_questions))
    if proposals:
        lines = ["Jeg har ikke gjort noen endringer ennå. Forslag:"]
        lines.extend(f"{i}. {summary}" for i, summary in enumerate(proposals, 1))
        lines.append("Skal jeg gjennomføre dette? Svar «ja» for å bekrefte.")
        parts.append("\n".join(lines))
    return "\n\n".join(parts)


# ========== Worker ==========

class Worker:
    """A specialist bound to one card, one decision model and the ledger."""

    def __init__(self, card: WorkerCard, model, client, settings: Settings, registry=None):
        """
        Args:
            card: the worker's card (actions factory, instructions, clarifiers)
            model: LangChain chat model supporting ``bind_tools``
            client: LedgerClient implementation
            settings: application settings
            registry: WorkerRegistry, for building delegation tools
        """
        self.card = card
        self.model = model
        self.client = client
        self.settings = settings
        self.registry = registry

    @property
    def id(self) -> str:
        return self.card.id

    def build_actions(self, attachments: AttachmentRelay) -> List[ActionSpec]:
        if self.card.factory is None:
            return []
        ctx = ActionContext(client=self.client, attachments=attachments, settings=self.settings, worker_id=self.id)
        return list(self.card.factory(ctx))

    async def run(self, request: DelegationRequest, channel=None, journal: Optional[ActionJournal] = None) -> WorkerResult:
        """Handle one delegation.

        Args:
            request: the delivered request (transcript already distilled)
            channel: DelegationChannel for onward delegation
            journal: receives the action records as each call completes

        Returns:
            WorkerResult
        """
        LOGGER.info(f"[{self.id}] task from {request.origin_id}: {request.task[:120]}")

        if not request.confirmed:
            question = self._precheck(request)
            if question:
                LOGGER.info(f"[{self.id}] clarification before acting: {question}")
                return WorkerResult(worker_id=self.id, reply=question, needs_input=True)

        specs = self.build_actions(request.attachments)
        journal = journal if journal is not None else ActionJournal()
        delegation_tools = []
        if channel is not None and self.registry is not None:
            delegation_tools = create_delegation_tools(self.id, channel, self.registry, request, journal)

        initial = self._initial_messages(request, delegation_targets=[t.name for t in delegation_tools])
        graph = self._build_graph(specs, delegation_tools, journal)

        names = {spec.name: spec for spec in specs}
        replay = [p for p in request.confirmed_proposals() if p.get("action") in names]
        consented = [names[p["action"]].consent_key(p.get("args") or {}) for p in replay]

        state: WorkerState = {
            "messages": initial,
            "worker_id": self.id,
            "loops": 0,
            "max_loops": self.settings.governance.max_worker_loops,
            "confirmed": request.confirmed,
            "confirmed_actions": list(request.confirmed_actions),
            "replay": replay,
            "consented": consented,
            "known_creations": list(request.known_creations),
            "proposals": [],
            "questions": [],
            "error": None,
        }
        config = {"recursion_limit": state["max_loops"] * 3 + 10}
        final = await graph.ainvoke(state, config)
        return self._result(final, len(initial), journal)

    # ========== Building blocks ==========

    def _precheck(self, request: DelegationRequest) -> Optional[str]:
        for name in self.card.clarifiers:
            clarifier = CLARIFIERS.get(name)
            if clarifier is None:
                LOGGER.warning(f"[{self.id}] unknown clarifier: {name}")
                continue
            question = clarifier(request)
            if question:
                return question
        return None

    def _initial_messages(self, request: DelegationRequest, delegation_targets: Sequence[str]) -> List[BaseMessage]:
        targets = []
        for tool_name in delegation_targets:
            card = self.registry.get(tool_name.split("delegate_to_", 1)[-1]) if self.registry else None
            if card is not None:
                targets.append({"id": card.id, "description": card.description})

        system = SystemMessage(content=PromptBuilder.worker_prompt(
            name=self.card.name,
            description=self.card.description,
            instructions=self.card.instructions,
            delegation_targets=targets,
            attachments=request.attachments.describe(),
        ))

        history = truncate_messages_safely(
            list(request.transcript.messages),
            keep_recent=self.settings.governance.max_message_history,
        )
        return [system, *history, self._task_message(request)]

    def _task_message(self, request: DelegationRequest) -> HumanMessage:
        sections = [f"[Delegert oppgave fra {request.origin_id}]: {request.task}"]

        context = {k: v for k, v in request.context.items() if k != "confirmed_proposals"}
        if context:
            sections.append(f"Kontekst: {json.dumps(context, ensure_ascii=False, default=str)}")

        if request.known_creations:
            listed = "\n".join(f"- {fact.describe()}" for fact in request.known_creations)
            sections.append(f"Allerede opprettet i denne oppgaven (skal ikke opprettes på nytt):\n{listed}")

        if request.confirmed:
            sections.append("Brukeren har bekreftet. Gjennomfør det som ble foreslått, uten å opprette noe på nytt.")

        text = "\n\n".join(sections)
        if self.card.has_capability(ATTACHMENTS_CAPABILITY) and request.attachments:
            parts = request.attachments.content_parts(limit=self.settings.accounting.max_vision_attachments)
            if parts:
                return HumanMessage(content=[{"type": "text", "text": text}, *parts])
        return HumanMessage(content=text)

    def _build_graph(self, specs: Sequence[ActionSpec], delegation_tools: Sequence[Any], journal: Optional[ActionJournal] = None):
        worker_id = self.id
        tools = [spec.tool for spec in specs] + list(delegation_tools)
        action_node = ActionNode(specs, passthrough_tools=delegation_tools, worker_id=worker_id, journal=journal)

        async def replay_node(state: WorkerState) -> Dict[str, Any]:
            log_node_entry(LOGGER, f"{worker_id}.replay", state)
            calls = [
                {
                    "name": p["action"],
                    "args": dict(p.get("args") or {}),
                    "id": f"replay_{uuid.uuid4().hex[:12]}",
                    "type": "tool_call",
                }
                for p in state.get("replay") or []
            ]
            return {"messages": [AIMessage(content="", tool_calls=calls, name=worker_id)]}

        @with_error_boundary(f"{worker_id}.agent")
        async def agent_node(state: WorkerState) -> Dict[str, Any]:
            log_node_entry(LOGGER, f"{worker_id}.agent", state)
            loops = state.get("loops", 0)
            if loops >= state.get("max_loops", 15):
                LOGGER.warning(f"[{worker_id}] loop limit reached ({loops})")
                return {"messages": [AIMessage(content=LOOP_LIMIT_REPLY, name=worker_id)], "error": LOOP_LIMIT_REPLY}

            response = await invoke_decider(self.model, tools, list(state["messages"]))
            if not isinstance(response, AIMessage):
                response = AIMessage(content=stringify_content(getattr(response, "content", response)))
            response = response.model_copy(update={"name": worker_id})
            updates = {"messages": [response], "loops": loops + 1}
            log_node_exit(LOGGER, f"{worker_id}.agent", updates)
            return updates

        async def respond_node(state: WorkerState) -> Dict[str, Any]:
            text = _format_reply(state.get("questions") or [], state.get("proposals") or [])
            return {"messages": [AIMessage(content=text, name=worker_id)]}

        def start_route(state: WorkerState) -> str:
            decision = "replay" if state.get("replay") else "agent"
            log_routing_decision(LOGGER, "start", decision)
            return decision

        def agent_route(state: WorkerState) -> str:
            last = state["messages"][-1]
            if isinstance(last, AIMessage) and last.tool_calls and not state.get("error"):
                decision = "actions"
                reason = f"{len(last.tool_calls)} action call(s)"
            else:
                decision = END
                reason = "No action calls, worker finished"
            log_routing_decision(LOGGER, f"{worker_id}.agent", str(decision), reason)
            return decision

        def actions_route(state: WorkerState) -> str:
            if state.get("questions") or state.get("proposals"):
                decision = "respond"
                reason = "Waiting for the user"
            else:
                decision = "agent"
                reason = "Outcomes returned to the decision step"
            log_routing_decision(LOGGER, f"{worker_id}.actions", decision, reason)
            return decision

        graph = StateGraph(WorkerState)
        graph.add_node("replay", replay_node)
        graph.add_node("agent", agent_node)
        graph.add_node("actions", action_node)
        graph.add_node("respond", respond_node)

        graph.add_conditional_edges(START, start_route, {"replay": "replay", "agent": "agent"})
        graph.add_edge("replay", "actions")
        graph.add_conditional_edges("agent", agent_route, {"actions": "actions", END: END})
        graph.add_conditional_edges("actions", actions_route, {"respond": "respond", "agent": "agent"})
        graph.add_edge("respond", END)
        return graph.compile()

    def _result(self, final: Mapping[str, Any], start: int, journal: ActionJournal) -> WorkerResult:
        produced = list(final.get("messages", []))[start:]
        own_records = [m for m in produced if is_action_message(m)]
        records = journal.messages()

        reply = ""
        for message in reversed(produced):
            if isinstance(message, AIMessage) and not message.tool_calls:
                reply = stringify_content(message.content).strip()
                break

        created: Dict[str, Any] = {}
        for fact in index_creations(records):
            created[fact.entity_type] = fact.identifier

        complete = False
        for message in own_records:
            if isinstance(message, ToolMessage):
                outcome = ActionOutcome.parse(message.content)
                if outcome.success and outcome.completed:
                    complete = True

        error = final.get("error")
        questions = final.get("questions") or []
        proposals = final.get("proposals") or []
        return WorkerResult(
            worker_id=self.id,
            reply=reply or ("Ferdig." if not error else error),
            records=records,
            needs_input=bool(questions),
            awaiting_confirmation=bool(proposals),
            success=not error,
            error=error,
            created=created,
            operation_complete=complete,
        )
