"""Versioned, immutable conversation transcript.

The transcript is a value: ``append()`` returns the next version and never
touches the original. User turns are ``HumanMessage``s, assistant turns are
``AIMessage``s, and an action record is an ``AIMessage`` carrying
``tool_calls`` (``name`` = issuing worker) followed by one ``ToolMessage``
per call holding the JSON outcome.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Iterator, List, Optional, Sequence, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from ledgerAgent.utils.message_utils import stringify_content


def new_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Transcript:
    """Ordered, append-only sequence of turns and action records for one task."""

    messages: Tuple[BaseMessage, ...] = ()
    version: int = 0
    task_id: str = field(default_factory=new_task_id)

    def append(self, *messages: BaseMessage) -> "Transcript":
        if not messages:
            return self
        return replace(self, messages=self.messages + tuple(messages), version=self.version + 1)

    def extend(self, messages: Sequence[BaseMessage]) -> "Transcript":
        return self.append(*messages)

    def with_messages(self, messages: Sequence[BaseMessage]) -> "Transcript":
        """Same task and version, different content (used by the distiller)."""
        return replace(self, messages=tuple(messages))

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[BaseMessage]:
        return iter(self.messages)

    # ========== Queries ==========

    def user_texts(self) -> List[str]:
        return [stringify_content(m.content) for m in self.messages if isinstance(m, HumanMessage)]

    def last_user_index(self) -> Optional[int]:
        for i in range(len(self.messages) - 1, -1, -1):
            if isinstance(self.messages[i], HumanMessage):
                return i
        return None

    def last_user_text(self) -> str:
        index = self.last_user_index()
        if index is None:
            return ""
        return stringify_content(self.messages[index].content)


def is_action_message(message: BaseMessage) -> bool:
    """True for both halves of an action record."""
    if isinstance(message, ToolMessage):
        return True
    return isinstance(message, AIMessage) and bool(getattr(message, "tool_calls", None))
