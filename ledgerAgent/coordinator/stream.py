"""Streaming wrapper around ``Coordinator.handle_turn``.

Yields events while the turn runs:

- ``action_call``: a delegation was sent (worker, task)
- ``action_result``: a delegation came back (worker, success, text)
- ``text``: something the coordinator says, as soon as the graph produces it;
  the final reply is not repeated when it was already streamed
- ``error``: a delegation failed, the turn ran out of time, or the turn failed outright
- ``done``: always last; carries the ``TurnResult`` (or None after an error)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Sequence

from ledgerAgent.coordinator.session import TaskSession
from ledgerAgent.utils.error_handler import plain_language_error

LOGGER = logging.getLogger(__name__)

EVENT_TYPES = ("text", "action_call", "action_result", "error", "done")


@dataclass(frozen=True)
class StreamEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


async def stream_turn(
    coordinator,
    session: TaskSession,
    text: str,
    files: Optional[Sequence[Any]] = None,
    supersede: bool = False,
) -> AsyncIterator[StreamEvent]:
    """Run one turn and yield its events as they happen.

    Args:
        coordinator: Coordinator instance
        session: current task session
        text: the user's message
        files: files sent with the message
        supersede: replace the task's files instead of adding to them
    """
    queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()

    def listener(event_type: str, data: Dict[str, Any]) -> None:
        queue.put_nowait(StreamEvent(type=event_type, data=dict(data)))

    async def run() -> None:
        try:
            result = await coordinator.handle_turn(session, text, files=files, supersede=supersede, listener=listener)
        except Exception as e:
            LOGGER.exception("Streaming turn failed", exc_info=e)
            queue.put_nowait(StreamEvent(type="error", data={"message": plain_language_error(e)}))
            queue.put_nowait(StreamEvent(type="done", data={"result": None}))
            return
        queue.put_nowait(StreamEvent(type="done", data={"result": result}))

    task = asyncio.create_task(run())
    try:
        while True:
            event = await queue.get()
            yield event
            if event.type == "done":
                break
    finally:
        if not task.done():
            task.cancel()
