"""Utilities for cleaning and processing message histories."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Set

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

# Content part types that carry a file rather than text
ATTACHMENT_PART_TYPES = {"image_url", "image", "file", "input_file", "media"}


def stringify_content(content: Any) -> str:
    """Flatten message content (plain string or multi-part list) into text.

    Non-text parts are skipped.
    """
    if isinstance(content, list):
        pieces: List[str] = []
        for item in content:
            if isinstance(item, str):
                pieces.append(item)
            elif isinstance(item, dict) and item.get("type", "text") == "text" and "text" in item:
                pieces.append(str(item["text"]))
        return "\n".join(pieces)
    if content is None:
        return ""
    return str(content)


def is_attachment_part(part: Any) -> bool:
    return isinstance(part, dict) and part.get("type") in ATTACHMENT_PART_TYPES


def parse_tool_content(content: Any) -> Dict[str, Any]:
    """Parse a ToolMessage payload into a dict.

    JSON objects are returned as-is; anything else is wrapped as
    ``{"message": text}``.
    """
    if isinstance(content, dict):
        return content
    text = stringify_content(content).strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return {"message": text}
    if isinstance(parsed, dict):
        return parsed
    return {"message": text}


def clean_message_history(messages: List[BaseMessage]) -> List[BaseMessage]:
    """Remove AI messages with unanswered tool_calls.

    OpenAI requires that every AI message with tool_calls must be followed by
    corresponding ToolMessages.

    Args:
        messages: List of conversation messages

    Returns:
        Cleaned list with unanswered tool_calls removed
    """
    answered_call_ids: Set[str] = set()
    for msg in messages:
        if isinstance(msg, ToolMessage):
            call_id = getattr(msg, "tool_call_id", None)
            if call_id:
                answered_call_ids.add(call_id)

    cleaned: List[BaseMessage] = []
    for msg in messages:
        if isinstance(msg, AIMessage):
            tool_calls = getattr(msg, "tool_calls", None) or []
            if tool_calls and any(tc.get("id") not in answered_call_ids for tc in tool_calls):
                continue
        cleaned.append(msg)

    return cleaned


def truncate_messages_safely(messages: List[BaseMessage], keep_recent: int = 10) -> List[BaseMessage]:
    """Safely truncate message history while preserving AIMessage-ToolMessage pairs.

    1. If we keep a ToolMessage, we also keep its corresponding AIMessage
    2. System messages are always kept

    Args:
        messages: List of conversation messages
        keep_recent: Number of recent messages to attempt to keep

    Returns:
        Truncated message list
    """
    if len(messages) <= keep_recent:
        return messages

    call_owner: Dict[str, int] = {}
    for i, msg in enumerate(messages):
        if isinstance(msg, AIMessage):
            for tc in getattr(msg, "tool_calls", None) or []:
                if tc.get("id"):
                    call_owner[tc["id"]] = i

    cutoff_idx = len(messages) - keep_recent
    must_keep: Set[int] = set(range(cutoff_idx, len(messages)))

    for i in range(cutoff_idx, len(messages)):
        msg = messages[i]
        if isinstance(msg, ToolMessage):
            owner = call_owner.get(getattr(msg, "tool_call_id", None))
            if owner is not None:
                must_keep.add(owner)

    for i, msg in enumerate(messages):
        if isinstance(msg, SystemMessage):
            must_keep.add(i)

    # An AIMessage pulled back in needs all of its answers too
    kept_calls = {
        tc["id"]
        for i in must_keep
        if isinstance(messages[i], AIMessage)
        for tc in (getattr(messages[i], "tool_calls", None) or [])
        if tc.get("id")
    }
    for i, msg in enumerate(messages):
        if isinstance(msg, ToolMessage) and getattr(msg, "tool_call_id", None) in kept_calls:
            must_keep.add(i)

    return [messages[i] for i in sorted(must_keep)]
