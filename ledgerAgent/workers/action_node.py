"""Gated action node for the worker loop.

Wraps action execution the way an approval ToolNode wraps tool execution,
but instead of interrupting the graph it answers the decision step with an
outcome it can reason about:

1. Creation whose intent already exists → no-op naming the existing identifier
2. Side effect without consent → proposal (``requires_confirmation``), not executed
3. Otherwise → executed, with one correction + retry on structural failures

The gate works from structured facts (``known_creations``), never from text.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.tools import BaseTool

from ledgerAgent.transcript.creations import CreationFact, find_by_intent
from ledgerAgent.transcript.journal import ActionJournal
from ledgerAgent.transcript.records import duplicate_noop, dump_outcome, failure, proposal
from ledgerAgent.utils.error_handler import LedgerAgentError, plain_language_error
from ledgerAgent.utils.logging_utils import log_action_call, log_action_result
from ledgerAgent.workers.actions import ActionSpec, execute_action

LOGGER = logging.getLogger(__name__)


class ActionNode:
    """Executes the tool calls of the latest decision under the consent and duplicate gate."""

    def __init__(
        self,
        specs: Sequence[ActionSpec],
        passthrough_tools: Sequence[BaseTool] = (),
        worker_id: str = "",
        journal: Optional[ActionJournal] = None,
    ):
        """
        Args:
            specs: the worker's gated actions
            passthrough_tools: tools executed without gating (delegation)
            worker_id: owning worker, for logs and creation facts
            journal: receives each decision and every result as it completes
        """
        self.specs: Dict[str, ActionSpec] = {spec.name: spec for spec in specs}
        self.passthrough: Dict[str, BaseTool] = {t.name: t for t in passthrough_tools}
        self.worker_id = worker_id
        self.journal = journal

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        messages = state.get("messages", [])
        last = messages[-1] if messages else None
        if not isinstance(last, AIMessage) or not last.tool_calls:
            return {}

        creations: List[CreationFact] = list(state.get("known_creations") or [])
        proposals: List[str] = list(state.get("proposals") or [])
        questions: List[str] = list(state.get("questions") or [])
        tool_messages: List[ToolMessage] = []
        if self.journal is not None:
            self.journal.begin(last)

        for call in last.tool_calls:
            name = call.get("name", "")
            args = dict(call.get("args") or {})
            log_action_call(LOGGER, name, args)

            outcome = await self._run_call(name, args, state, creations)

            if outcome.get("requires_confirmation") or outcome.get("awaiting_confirmation"):
                proposals.append(str(outcome.get("message", name)))
            if outcome.get("question"):
                questions.append(str(outcome["question"]))
            if outcome.get("success") and isinstance(outcome.get("created"), Mapping):
                for entity_type, identifier in outcome["created"].items():
                    creations.append(CreationFact(
                        entity_type=entity_type,
                        identifier=identifier,
                        action=name,
                        worker_id=self.worker_id,
                        intent=outcome.get("intent"),
                    ))

            log_action_result(LOGGER, name, outcome, success=bool(outcome.get("success")))
            result = ToolMessage(
                content=dump_outcome(outcome),
                tool_call_id=call.get("id", ""),
                name=name,
            )
            tool_messages.append(result)
            if self.journal is not None:
                self.journal.record(result)

        return {
            "messages": tool_messages,
            "known_creations": creations,
            "proposals": proposals,
            "questions": questions,
        }

    async def _run_call(
        self,
        name: str,
        args: Dict[str, Any],
        state: Mapping[str, Any],
        creations: Sequence[CreationFact],
    ) -> Dict[str, Any]:
        if name in self.passthrough:
            try:
                result = await self.passthrough[name].ainvoke(args)
            except LedgerAgentError as e:
                return failure(e.user_message)
            return result if isinstance(result, dict) else {"success": True, "message": str(result)}

        spec = self.specs.get(name)
        if spec is None:
            return failure(f"Ukjent handling: {name}")

        intent: Optional[str] = spec.intent_key(args)
        if spec.creates:
            existing = find_by_intent(creations, intent)
            if existing is not None:
                LOGGER.info(f"{name}: intent already fulfilled by {existing.describe()}, skipping")
                return {**duplicate_noop(existing.entity_type, existing.identifier), "intent": intent}

        if spec.side_effect and not self._authorized(spec, args, state, creations):
            return proposal(spec.name, args, spec.describe(args))

        try:
            outcome = await execute_action(spec, args)
        except Exception as e:
            LOGGER.exception(f"{name} crashed", exc_info=e)
            return failure(plain_language_error(e))

        if intent and outcome.get("success") and outcome.get("created"):
            outcome["intent"] = intent
        return outcome

    def _authorized(
        self,
        spec: ActionSpec,
        args: Mapping[str, Any],
        state: Mapping[str, Any],
        creations: Sequence[CreationFact],
    ) -> bool:
        if state.get("confirmed"):
            consented = state.get("consented") or []
            if consented:
                if spec.consent_key(args) in consented:
                    return True
            else:
                allowed = state.get("confirmed_actions") or []
                if not allowed or spec.name in allowed:
                    return True
        if spec.authorize is not None:
            return spec.authorize(args, creations)
        return False
