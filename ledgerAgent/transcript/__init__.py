"""Transcript value, action outcome records, distillation and derived facts."""

from .creations import (
    CreationFact,
    PendingProposal,
    find_by_intent,
    index_creations,
    latest_action_run,
    latest_creations,
    pending_proposals,
)
from .distiller import ATTACHMENTS_CAPABILITY, DISTILLED_FLAG, distill, distill_messages, is_distilled
from .journal import ActionJournal
from .records import (
    ActionOutcome,
    call_key,
    clarification,
    duplicate_noop,
    dump_outcome,
    extract_identifiers,
    failure,
    proposal,
    success,
)
from .transcript import Transcript, is_action_message, new_task_id

__all__ = [
    "ATTACHMENTS_CAPABILITY",
    "ActionJournal",
    "DISTILLED_FLAG",
    "ActionOutcome",
    "CreationFact",
    "PendingProposal",
    "Transcript",
    "call_key",
    "clarification",
    "distill",
    "distill_messages",
    "dump_outcome",
    "duplicate_noop",
    "extract_identifiers",
    "failure",
    "find_by_intent",
    "index_creations",
    "is_action_message",
    "is_distilled",
    "latest_action_run",
    "latest_creations",
    "new_task_id",
    "pending_proposals",
    "proposal",
    "success",
]
