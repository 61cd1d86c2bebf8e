"""Generate delegation tools for worker-to-worker communication.

Each party gets one ``delegate_to_{worker_id}`` tool per other worker. The
origin's own id is excluded here, and ``DelegationRequest`` rejects it
again at construction.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from ledgerAgent.delegation.channel import DelegationChannel, DelegationRequest, DelegationResponse
from ledgerAgent.transcript.creations import index_creations
from ledgerAgent.transcript.journal import ActionJournal

LOGGER = logging.getLogger(__name__)

DELEGATION_PREFIX = "delegate_to_"


class DelegateArgs(BaseModel):
    task: str = Field(description="Selvstendig oppgavebeskrivelse med alle beløp, datoer, navn og ID-er mottakeren trenger")
    context: Optional[Dict[str, Any]] = Field(default=None, description="Strukturerte detaljer (beløp, datoer, ID-er)")


def is_delegation_tool(name: str) -> bool:
    return name.startswith(DELEGATION_PREFIX)


def target_of(name: str) -> str:
    return name[len(DELEGATION_PREFIX):]


def response_outcome(response: DelegationResponse) -> Dict[str, Any]:
    """Action outcome recorded for a delegation call."""
    outcome: Dict[str, Any] = {
        "success": response.success,
        "delegated_to": response.responding_id,
    }
    if response.success:
        outcome["message"] = response.result or ""
    else:
        outcome["error"] = response.error or ""
    if response.created:
        outcome["created"] = dict(response.created)
    if response.operation_complete:
        outcome["operation_complete"] = True
    if response.needs_input:
        outcome["needs_input"] = True
        outcome["question"] = response.text
    if response.awaiting_confirmation:
        outcome["awaiting_confirmation"] = True
        outcome["message"] = response.text
    return outcome


def create_delegation_tools(
    origin_id: str,
    channel: DelegationChannel,
    registry,
    parent: DelegationRequest,
    journal: Optional[ActionJournal] = None,
    prepare: Optional[Callable[[DelegationRequest], Union[DelegationRequest, DelegationResponse]]] = None,
    on_response: Optional[Callable[[DelegationRequest, DelegationResponse], None]] = None,
) -> List[BaseTool]:
    """Create one delegation tool per enabled worker other than the origin.

    Args:
        origin_id: the party the tools belong to (never gets a tool for itself)
        channel: delegation channel used to send the requests
        registry: WorkerRegistry with the enabled workers
        parent: the request the origin is currently handling; supplies the
            transcript, attachments, call stack and known creations
        journal: the origin's action journal; each delegated run writes its
            records into a child journal opened here
        prepare: optional hook that may rewrite a request, or answer it
            without sending (returning a response)
        on_response: optional observer called with every request and response

    Returns:
        List of ``delegate_to_<id>`` tools
    """
    tools: List[BaseTool] = []
    journal = journal if journal is not None else ActionJournal()

    for card in registry.list_enabled():
        if card.id == origin_id:
            continue
        tools.append(_create_single_delegation_tool(card, origin_id, channel, parent, journal, prepare, on_response))
        LOGGER.debug(f"Created delegation tool: {DELEGATION_PREFIX}{card.id} for {origin_id}")

    return tools


def _create_single_delegation_tool(
    card,
    origin_id: str,
    channel: DelegationChannel,
    parent: DelegationRequest,
    journal: ActionJournal,
    prepare=None,
    on_response=None,
) -> BaseTool:
    target_id = card.id
    skills = ", ".join(s.name for s in card.skills) or card.name

    async def delegate(task: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        known = tuple(parent.known_creations) + tuple(index_creations(journal.messages()))
        request = DelegationRequest(
            origin_id=origin_id,
            target_id=target_id,
            task=task,
            context=dict(context or {}),
            transcript=parent.transcript,
            attachments=parent.attachments,
            call_stack=parent.call_stack,
            known_creations=known,
        )
        prepared = prepare(request) if prepare is not None else request
        if isinstance(prepared, DelegationResponse):
            response = prepared
            journal.extend(response.records)
        else:
            request = prepared
            response = await channel.send(request, journal=journal.child())
        if on_response is not None:
            on_response(request, response)
        return response_outcome(response)

    return StructuredTool.from_function(
        coroutine=delegate,
        name=f"{DELEGATION_PREFIX}{target_id}",
        description=(
            f"Deleger en oppgave til {card.name}. {card.description}\n"
            f"Oppgaver: {skills}.\n"
            "Mottakeren ser bare et sammendrag av samtalen, så oppgaven må være selvstendig."
        ),
        args_schema=DelegateArgs,
    )
