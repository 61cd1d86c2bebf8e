"""Coordinator: policy, routing and reply composition for user turns."""

from .coordinator import Coordinator, TurnResult
from .policy import PolicyChecker, PolicyDecision, TurnKind
from .session import TaskSession
from .stream import StreamEvent, stream_turn

__all__ = [
    "Coordinator",
    "TurnResult",
    "PolicyChecker",
    "PolicyDecision",
    "TurnKind",
    "TaskSession",
    "StreamEvent",
    "stream_turn",
]
