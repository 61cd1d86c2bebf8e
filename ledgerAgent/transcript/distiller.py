"""Context distiller.

Converts a transcript into the form a recipient can consume:

- plain user/assistant turns pass through, turns that are empty after
  trimming are dropped
- each contiguous run of action records collapses into at most one
  synthetic assistant turn listing, per record, the action, a success
  marker, identifiers, the message and whether the work is complete
- attachment parts survive only for recipients with the ``attachments``
  capability

The function is pure and idempotent: ``distill(distill(t, c), c) == distill(t, c)``.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

from ledgerAgent.transcript.records import ActionOutcome
from ledgerAgent.transcript.transcript import Transcript
from ledgerAgent.utils.message_utils import clean_message_history, is_attachment_part, stringify_content

DISTILLED_FLAG = "distilled"
ATTACHMENTS_CAPABILITY = "attachments"

_MAX_MESSAGE_CHARS = 300


def is_distilled(message: BaseMessage) -> bool:
    return isinstance(message, AIMessage) and bool(message.additional_kwargs.get(DISTILLED_FLAG))


def _shorten(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > _MAX_MESSAGE_CHARS:
        return text[: _MAX_MESSAGE_CHARS - 3] + "..."
    return text


def render_record(action: str, content) -> Optional[str]:
    """One line for one action record, or None if it has nothing to report."""
    outcome = ActionOutcome.parse(content)
    message = outcome.question or outcome.message
    if not outcome.identifiers and not message:
        return None

    parts = [f"[{action} {'✓' if outcome.success else '✗'}]"]
    if outcome.identifiers:
        parts.append(", ".join(f"{key}={value}" for key, value in outcome.identifiers.items()))
    if message:
        parts.append(_shorten(message))
    if outcome.completed:
        parts.append("fullført, skal ikke gjentas")
    if outcome.requires_confirmation:
        parts.append("venter på bekreftelse")
    return " | ".join(parts)


def _distill_turn(message: BaseMessage, keep_attachments: bool) -> Optional[BaseMessage]:
    if isinstance(message, SystemMessage):
        return message

    content = message.content
    if isinstance(content, str):
        return message if content.strip() else None

    kept: List = []
    texts: List[str] = []
    for part in content or []:
        if isinstance(part, str):
            if part.strip():
                kept.append(part)
                texts.append(part)
        elif is_attachment_part(part):
            if keep_attachments:
                kept.append(part)
        elif isinstance(part, dict) and part.get("type", "text") == "text":
            text = str(part.get("text") or "")
            if text.strip():
                kept.append(part)
                texts.append(text)

    if keep_attachments:
        if not kept:
            return None
        if kept == list(content):
            return message
        return message.model_copy(update={"content": kept})

    text = "\n".join(texts).strip()
    if not text:
        return None
    return message.model_copy(update={"content": text})


def distill_messages(messages: Sequence[BaseMessage], capabilities: Iterable[str] = ()) -> List[BaseMessage]:
    """Distil a message list for a recipient with the given capabilities."""
    keep_attachments = ATTACHMENTS_CAPABILITY in set(capabilities)
    answered = clean_message_history(list(messages))

    call_names: Dict[str, str] = {}
    for message in answered:
        if isinstance(message, AIMessage):
            for call in message.tool_calls or []:
                if call.get("id"):
                    call_names[call["id"]] = call.get("name", "")

    result: List[BaseMessage] = []
    run: List[str] = []

    def flush() -> None:
        if run:
            result.append(AIMessage(content="\n".join(run), additional_kwargs={DISTILLED_FLAG: True}))
            run.clear()

    for message in answered:
        if isinstance(message, ToolMessage):
            action = call_names.get(message.tool_call_id) or message.name or "action"
            line = render_record(action, message.content)
            if line:
                run.append(line)
            continue

        if isinstance(message, AIMessage) and message.tool_calls:
            # The invocation itself adds nothing; any narration on it is a plain turn
            text = stringify_content(message.content).strip()
            if text:
                flush()
                result.append(AIMessage(content=text, name=message.name))
            continue

        flush()
        turn = _distill_turn(message, keep_attachments)
        if turn is not None:
            result.append(turn)

    flush()
    return result


def distill(
    transcript: Union[Transcript, Sequence[BaseMessage]],
    capabilities: Iterable[str] = (),
) -> Union[Transcript, List[BaseMessage]]:
    """Distil a transcript (or a plain message list) for a recipient.

    Args:
        transcript: full transcript, may contain raw action records
        capabilities: recipient capability names

    Returns:
        A value of the same kind containing only plain turns and distilled entries
    """
    if isinstance(transcript, Transcript):
        return transcript.with_messages(distill_messages(transcript.messages, capabilities))
    return distill_messages(transcript, capabilities)
