"""State schema for the worker loop graph."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional, TypedDict

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages

from ledgerAgent.transcript.creations import CreationFact


class WorkerState(TypedDict, total=False):
    """State carried through one delegation handled by one worker."""

    # ========== Conversation ==========
    messages: Annotated[List[BaseMessage], add_messages]

    # ========== Identity & limits ==========
    worker_id: str
    loops: int
    max_loops: int

    # ========== Consent ==========
    confirmed: bool
    confirmed_actions: List[str]
    replay: List[Dict[str, Any]]         # confirmed proposals to execute first
    consented: List[str]                 # consent keys of the confirmed proposals

    # ========== Facts & outcomes ==========
    known_creations: List[CreationFact]
    proposals: List[str]                 # summaries awaiting confirmation
    questions: List[str]                 # clarifying questions for the user
    error: Optional[str]
