"""Delegation channel: call-and-return hand-off of a task to a worker.

The channel is the only way work moves between parties. It distils the
transcript for the recipient, enforces the depth and cycle limits, applies
the wall-clock budget and turns every failure into a structured response,
so a delegating party never sees an exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import BaseMessage

from ledgerAgent.attachments.relay import AttachmentRelay
from ledgerAgent.transcript.creations import CreationFact, index_creations
from ledgerAgent.transcript.distiller import distill
from ledgerAgent.transcript.journal import ActionJournal
from ledgerAgent.transcript.transcript import Transcript
from ledgerAgent.utils.error_handler import SelfDelegationError, plain_language_error
from ledgerAgent.utils.logging_utils import log_delegation, log_delegation_result

LOGGER = logging.getLogger(__name__)

COORDINATOR_ID = "coordinator"


@dataclass(frozen=True)
class DelegationRequest:
    """A task handed from one party to a worker.

    Attributes:
        origin_id: delegating party (the coordinator or a worker id)
        target_id: receiving worker id, never equal to ``origin_id``
        task: self-contained task text
        context: structured details (amounts, dates, ids, confirmed proposals)
        transcript: the task transcript, distilled by the channel before delivery
        attachments: the task's attachment relay
        call_stack: worker ids currently handling this chain, outermost first
        known_creations: entities already created in the task
        confirmed: the user has confirmed the proposed side effects
        confirmed_actions: action names the confirmation covers (empty = all)
    """

    origin_id: str
    target_id: str
    task: str
    context: Dict[str, Any] = field(default_factory=dict)
    transcript: Transcript = field(default_factory=Transcript)
    attachments: AttachmentRelay = field(default_factory=AttachmentRelay)
    call_stack: Tuple[str, ...] = ()
    known_creations: Tuple[CreationFact, ...] = ()
    confirmed: bool = False
    confirmed_actions: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.origin_id == self.target_id:
            raise SelfDelegationError(
                f"{self.origin_id} cannot delegate to itself",
                "En oppgave ble sendt tilbake til samme spesialist.",
            )

    @property
    def depth(self) -> int:
        return len(self.call_stack)

    def confirmed_proposals(self) -> List[Dict[str, Any]]:
        proposals = self.context.get("confirmed_proposals") or []
        return [p for p in proposals if isinstance(p, dict) and p.get("action")]


@dataclass(frozen=True)
class DelegationResponse:
    """What comes back from a delegation: always a value, never an exception."""

    success: bool
    responding_id: str
    result: Optional[str] = None
    error: Optional[str] = None
    records: Tuple[BaseMessage, ...] = ()
    needs_input: bool = False
    awaiting_confirmation: bool = False
    created: Dict[str, Any] = field(default_factory=dict)
    operation_complete: bool = False

    @property
    def text(self) -> str:
        return (self.result if self.success else self.error) or ""

    @classmethod
    def failed(cls, responding_id: str, error: str) -> "DelegationResponse":
        return cls(success=False, responding_id=responding_id, error=error)


class DelegationChannel:
    """Routes delegation requests to worker instances from the registry."""

    def __init__(self, registry, max_depth: int = 3, timeout_seconds: float = 120.0):
        """
        Args:
            registry: WorkerRegistry holding cards and instances
            max_depth: maximum nesting of worker-to-worker delegation
            timeout_seconds: wall-clock budget for one delegation
        """
        self.registry = registry
        self.max_depth = max_depth
        self.timeout_seconds = timeout_seconds

    async def send(self, request: DelegationRequest, journal: Optional[ActionJournal] = None) -> DelegationResponse:
        """Deliver a request and wait for the worker.

        Args:
            request: the delegation request (transcript not yet distilled)
            journal: receives the worker's action records as they complete;
                on timeout or failure the response carries what it holds

        Returns:
            DelegationResponse, never an exception
        """
        journal = journal if journal is not None else ActionJournal()
        target = request.target_id
        log_delegation(LOGGER, request.origin_id, target, request.task, request.call_stack)

        card = self.registry.get(target)
        if card is None:
            return self._reject(target, f"Ukjent spesialist: {target}", "Oppgaven kunne ikke sendes videre.")

        if target in request.call_stack:
            chain = " → ".join(request.call_stack + (target,))
            return self._reject(target, f"Delegation cycle: {chain}", "Oppgaven ble sendt i ring mellom spesialister og ble stoppet.")

        if request.depth >= self.max_depth:
            chain = " → ".join(request.call_stack + (target,))
            return self._reject(target, f"Delegation depth {request.depth} exceeds {self.max_depth}: {chain}", "Oppgaven ble delegert for mange ledd videre og ble stoppet.")

        delivered = replace(
            request,
            transcript=distill(request.transcript, card.capability_names()),
            call_stack=request.call_stack + (target,),
        )

        try:
            worker = self.registry.get_instance(target)
            result = await asyncio.wait_for(worker.run(delivered, self, journal), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning(f"Delegation to {target} timed out after {self.timeout_seconds}s ({len(journal)} records kept)")
            return self._interrupted(target, journal, "Det tok for lang tid å fullføre oppgaven. Prøv igjen om litt.")
        except Exception as e:
            LOGGER.exception(f"Delegation to {target} failed", exc_info=e)
            return self._interrupted(target, journal, plain_language_error(e))

        response = self._to_response(target, result)
        if response.records and not len(journal):
            # Workers that do not journal report their records in the result
            journal.extend(response.records)
        response = replace(response, records=tuple(journal.messages()))
        log_delegation_result(LOGGER, target, response.success, response.text)
        return response

    def _interrupted(self, target: str, journal: ActionJournal, error: str) -> DelegationResponse:
        records = tuple(journal.messages())
        response = DelegationResponse(success=False, responding_id=target, error=error, records=records)
        if records:
            created = {fact.entity_type: fact.identifier for fact in index_creations(records)}
            if created:
                response = replace(response, created=created)
        log_delegation_result(LOGGER, target, False, error)
        return response

    def _reject(self, target: str, reason: str, user_text: str) -> DelegationResponse:
        LOGGER.warning(f"Delegation rejected: {reason}")
        log_delegation_result(LOGGER, target, False, reason)
        return DelegationResponse.failed(target, user_text)

    @staticmethod
    def _to_response(target: str, result: Any) -> DelegationResponse:
        """Convert a worker result into a response tagged with the responder."""
        reply = getattr(result, "reply", None)
        if not isinstance(reply, str):
            LOGGER.error(f"Malformed result from {target}: {type(result).__name__}")
            return DelegationResponse.failed(target, "Spesialisten ga et ugyldig svar.")

        success = bool(getattr(result, "success", True))
        error = getattr(result, "error", None)
        return DelegationResponse(
            success=success,
            responding_id=target,
            result=reply if success else None,
            error=None if success else (error or reply or "Oppgaven ble ikke fullført."),
            records=tuple(getattr(result, "records", ()) or ()),
            needs_input=bool(getattr(result, "needs_input", False)),
            awaiting_confirmation=bool(getattr(result, "awaiting_confirmation", False)),
            created=dict(getattr(result, "created", {}) or {}),
            operation_complete=bool(getattr(result, "operation_complete", False)),
        )
