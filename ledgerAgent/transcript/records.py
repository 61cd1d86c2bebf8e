"""Action outcome records.

Every action returns a JSON object. The keys below form the shared
vocabulary between actions, the action gate, the distiller and the
creation index:

- ``success``: bool
- ``message``: short human-readable summary
- ``error``: failure text (never shown raw to the user)
- ``created``: ``{entity_type: identifier}`` for entities this action created
- ``operation_complete``: the requested operation is done, do not redo it
- ``question`` + ``needs_input``: a clarifying question for the user
- ``requires_confirmation`` + ``proposal``: a side effect awaiting consent
- ``duplicate_prevented``: creation skipped, ``created`` names the existing entity
- ``intent``: key identifying what was created (set by the action gate)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ledgerAgent.utils.message_utils import parse_tool_content

# Nested objects that never hold result identifiers
_NON_RESULT_KEYS = {"proposal", "search_criteria", "args"}


def _is_identifier(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and bool(value.strip())


def extract_identifiers(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Identifiers at the top level of an outcome or one level inside a named result.

    >>> extract_identifiers({"created": {"purchase": 7}, "purchase": {"purchase_id": 7, "supplier_id": 3}})
    {'purchase_id': 7, 'supplier_id': 3}
    """
    found: Dict[str, Any] = {}

    created = payload.get("created")
    if isinstance(created, Mapping):
        for entity, value in created.items():
            if _is_identifier(value):
                found[f"{entity}_id"] = value

    for key, value in payload.items():
        if key.endswith("_id") and _is_identifier(value):
            found.setdefault(key, value)

    for key, value in payload.items():
        if key == "created" or key in _NON_RESULT_KEYS or not isinstance(value, Mapping):
            continue
        for inner_key, inner in value.items():
            if inner_key.endswith("_id") and _is_identifier(inner):
                found.setdefault(inner_key, inner)

    return found


@dataclass(frozen=True)
class ActionOutcome:
    """Parsed view over one action outcome payload."""

    success: bool
    message: str = ""
    identifiers: Dict[str, Any] = field(default_factory=dict)
    created: Dict[str, Any] = field(default_factory=dict)
    completed: bool = False
    question: Optional[str] = None
    requires_confirmation: bool = False
    proposal: Optional[Dict[str, Any]] = None
    duplicate_prevented: bool = False
    intent: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, content: Any) -> "ActionOutcome":
        payload = parse_tool_content(content)
        created = payload.get("created") if isinstance(payload.get("created"), Mapping) else {}
        question = payload.get("question") if payload.get("needs_input") or payload.get("question") else None
        return cls(
            success=bool(payload.get("success", False)),
            message=str(payload.get("message") or "").strip(),
            identifiers=extract_identifiers(payload),
            created={k: v for k, v in created.items() if _is_identifier(v)},
            completed=bool(payload.get("operation_complete") or payload.get("duplicate_prevented")),
            question=str(question).strip() if question else None,
            requires_confirmation=bool(payload.get("requires_confirmation")),
            proposal=payload.get("proposal") if isinstance(payload.get("proposal"), Mapping) else None,
            duplicate_prevented=bool(payload.get("duplicate_prevented")),
            intent=payload.get("intent"),
            raw=payload,
        )

    @property
    def needs_input(self) -> bool:
        return self.question is not None


# ========== Outcome builders ==========

def success(
    message: Optional[str] = None,
    *,
    created: Optional[Mapping[str, Any]] = None,
    operation_complete: Optional[bool] = None,
    **data: Any,
) -> Dict[str, Any]:
    outcome: Dict[str, Any] = {"success": True}
    if message:
        outcome["message"] = message
    if created:
        outcome["created"] = dict(created)
        if operation_complete is None:
            operation_complete = True
    if operation_complete:
        outcome["operation_complete"] = True
    outcome.update(data)
    return outcome


def failure(error: str, **data: Any) -> Dict[str, Any]:
    return {"success": False, "error": error, **data}


def clarification(question: str, **data: Any) -> Dict[str, Any]:
    return {"success": False, "needs_input": True, "question": question, **data}


def proposal(action: str, args: Mapping[str, Any], summary: str) -> Dict[str, Any]:
    return {
        "success": False,
        "requires_confirmation": True,
        "message": summary,
        "proposal": {"action": action, "args": dict(args)},
    }


def duplicate_noop(entity_type: str, identifier: Any, message: Optional[str] = None) -> Dict[str, Any]:
    return {
        "success": True,
        "duplicate_prevented": True,
        "operation_complete": True,
        "created": {entity_type: identifier},
        "message": message or f"Finnes allerede ({entity_type} ID {identifier}), ikke opprettet på nytt",
    }


def dump_outcome(outcome: Mapping[str, Any]) -> str:
    return json.dumps(outcome, ensure_ascii=False, default=str)


# ========== Call identity ==========

def normalize_args(value: Any) -> Any:
    """Case-, whitespace- and rounding-insensitive form of action arguments; empty values dropped."""
    if isinstance(value, str):
        return " ".join(value.lower().split())
    if isinstance(value, float):
        return round(value, 2)
    if isinstance(value, Mapping):
        return {k: normalize_args(v) for k, v in sorted(value.items()) if v not in (None, "", [])}
    if isinstance(value, (list, tuple)):
        return [normalize_args(v) for v in value]
    return value


def call_key(action: str, args: Mapping[str, Any]) -> str:
    """Exact identity of an action call: its name plus normalised arguments."""
    return f"{action}:{json.dumps(normalize_args(dict(args)), sort_keys=True, ensure_ascii=False, default=str)}"
