"""State schema for the coordinator graph."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional, TypedDict

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages

from ledgerAgent.transcript.creations import CreationFact


class CoordinatorState(TypedDict, total=False):
    """State for one user turn handled by the coordinator."""

    # ========== Conversation ==========
    messages: Annotated[List[BaseMessage], add_messages]

    # ========== Loop control ==========
    loops: int
    max_loops: int

    # ========== Policy ==========
    turn_kind: str
    policy_question: Optional[str]
    dispatch: Optional[Dict[str, Any]]   # deterministic delegation decided by policy

    # ========== Outcomes ==========
    known_creations: List[CreationFact]
    proposals: List[str]
    questions: List[str]
    reply: Optional[str]
    error: Optional[str]
