"""Action specifications and execution with one-shot correction.

An action is a LangChain ``StructuredTool`` plus the metadata the action
gate needs: whether it has side effects, which entity it creates, which
arguments identify the user's intent, and how to summarise it for consent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, ValidationError

from ledgerAgent.accounting.rules import today_iso
from ledgerAgent.attachments.relay import AttachmentRelay
from ledgerAgent.config.settings import Settings
from ledgerAgent.transcript.creations import CreationFact
from ledgerAgent.transcript.records import call_key, clarification, failure, normalize_args
from ledgerAgent.utils.error_handler import (
    CorrectableError,
    CounterNotInitializedError,
    LedgerAgentError,
    MissingInformationError,
)
from ledgerAgent.utils.message_utils import parse_tool_content

LOGGER = logging.getLogger(__name__)

Correction = Callable[[CorrectableError, Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]
Authorizer = Callable[[Mapping[str, Any], Sequence[CreationFact]], bool]


@dataclass(frozen=True)
class ActionContext:
    """What a domain module needs to build its actions for one delegation."""

    client: Any
    attachments: AttachmentRelay
    settings: Settings
    worker_id: str


@dataclass(frozen=True)
class ActionSpec:
    """Gate metadata for one action.

    Attributes:
        tool: the executable StructuredTool
        side_effect: needs explicit confirmation before it runs
        creates: entity type created on success (enables duplicate protection)
        intent_fields: argument names identifying the user's intent (default: all)
        summary: builds the proposal text shown to the user
        corrections: error code -> local correction, tried once before a retry
        authorize: pre-authorisation rule (e.g. uploads to an entity created in this task)
    """

    tool: BaseTool
    side_effect: bool = False
    creates: Optional[str] = None
    intent_fields: Tuple[str, ...] = ()
    summary: Optional[Callable[[Mapping[str, Any]], str]] = None
    corrections: Mapping[str, Correction] = field(default_factory=dict)
    authorize: Optional[Authorizer] = None

    @property
    def name(self) -> str:
        return self.tool.name

    def intent_key(self, args: Mapping[str, Any]) -> Optional[str]:
        if not self.creates:
            return None
        fields = self.intent_fields or tuple(sorted(args))
        normalized = {f: normalize_args(args.get(f)) for f in fields}
        return f"{self.name}:{json.dumps(normalized, sort_keys=True, ensure_ascii=False, default=str)}"

    def consent_key(self, args: Mapping[str, Any]) -> str:
        """Exact identity of a proposed call, matched when the user confirms it."""
        return call_key(self.name, args)

    def describe(self, args: Mapping[str, Any]) -> str:
        if self.summary is not None:
            return self.summary(args)
        first_line = (self.tool.description or self.name).strip().splitlines()[0]
        shown = ", ".join(f"{k}={v}" for k, v in args.items() if v not in (None, "", []))
        return f"{first_line} ({shown})" if shown else first_line


def make_action(
    coroutine: Callable[..., Awaitable[Dict[str, Any]]],
    *,
    name: str,
    description: str,
    args_schema: type[BaseModel],
    side_effect: bool = False,
    creates: Optional[str] = None,
    intent_fields: Tuple[str, ...] = (),
    summary: Optional[Callable[[Mapping[str, Any]], str]] = None,
    corrections: Optional[Mapping[str, Correction]] = None,
    authorize: Optional[Authorizer] = None,
) -> ActionSpec:
    """Wrap an async function as a gated action."""
    tool = StructuredTool.from_function(
        coroutine=coroutine,
        name=name,
        description=description,
        args_schema=args_schema,
    )
    return ActionSpec(
        tool=tool,
        side_effect=side_effect,
        creates=creates,
        intent_fields=intent_fields,
        summary=summary,
        corrections=dict(corrections or {}),
        authorize=authorize,
    )


# ========== Corrections ==========

async def correct_invalid_date(error: CorrectableError, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Replace the rejected date with today's date."""
    candidates = [error.field] if error.field else []
    candidates += [k for k in args if k.endswith("date")]
    for key in candidates:
        if key and key in args:
            return {**args, key: today_iso()}
    return None


async def drop_stale_reference(error: CorrectableError, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop an optional reference that no longer resolves."""
    if error.field and args.get(error.field) is not None:
        corrected = dict(args)
        corrected.pop(error.field)
        return corrected
    return None


def initialize_counter(client: Any, start: int) -> Correction:
    """Run the counter setup, then retry with the same arguments."""

    async def _correct(error: CorrectableError, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        kind = error.kind if isinstance(error, CounterNotInitializedError) else "invoice"
        LOGGER.info(f"Initialising {kind} counter at {start}")
        await client.create_counter(kind, start)
        return dict(args)

    return _correct


DEFAULT_CORRECTIONS: Dict[str, Correction] = {
    "invalid_date": correct_invalid_date,
    "stale_reference": drop_stale_reference,
}


# ========== Execution ==========

def _as_outcome(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict):
        return result
    if isinstance(result, str):
        parsed = parse_tool_content(result)
        return parsed if "success" in parsed else {"success": True, **parsed}
    return {"success": True, "result": result}


def _validation_failure(error: ValidationError) -> Dict[str, Any]:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in error.errors()
    )
    return failure(f"Ugyldige argumenter: {problems}")


async def execute_action(spec: ActionSpec, args: Dict[str, Any]) -> Dict[str, Any]:
    """Run an action; on a correctable failure apply one correction and retry once.

    Missing information becomes a clarification outcome; every other
    failure becomes a failure outcome carrying only plain-language text.
    """
    try:
        return _as_outcome(await spec.tool.ainvoke(args))
    except ValidationError as e:
        return _validation_failure(e)
    except MissingInformationError as e:
        return clarification(e.question)
    except CorrectableError as e:
        correction = spec.corrections.get(e.code) or DEFAULT_CORRECTIONS.get(e.code)
        if correction is None:
            LOGGER.warning(f"{spec.name}: {e} (no correction for {e.code})")
            return failure(e.user_message)
        try:
            corrected = await correction(e, dict(args))
        except LedgerAgentError as setup_error:
            LOGGER.warning(f"{spec.name}: correction for {e.code} failed: {setup_error}")
            return failure(setup_error.user_message)
        if corrected is None:
            return failure(e.user_message)

        LOGGER.info(f"{spec.name}: retrying once after {e.code}")
        try:
            outcome = _as_outcome(await spec.tool.ainvoke(corrected))
        except ValidationError as retry_error:
            return _validation_failure(retry_error)
        except MissingInformationError as retry_error:
            return clarification(retry_error.question)
        except LedgerAgentError as retry_error:
            LOGGER.warning(f"{spec.name}: retry failed: {retry_error}")
            return failure(retry_error.user_message)
        outcome.setdefault("correction", e.code)
        return outcome
    except LedgerAgentError as e:
        LOGGER.warning(f"{spec.name}: {e}")
        return failure(e.user_message)


def specs_by_name(specs: Sequence[ActionSpec]) -> Dict[str, ActionSpec]:
    return {spec.name: spec for spec in specs}


def tools_of(specs: Sequence[ActionSpec]) -> List[BaseTool]:
    return [spec.tool for spec in specs]
