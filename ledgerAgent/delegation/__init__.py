"""Delegation channel and the tools that send work through it."""

from .channel import COORDINATOR_ID, DelegationChannel, DelegationRequest, DelegationResponse
from .tools import DELEGATION_PREFIX, create_delegation_tools, is_delegation_tool, response_outcome, target_of

__all__ = [
    "COORDINATOR_ID",
    "DELEGATION_PREFIX",
    "DelegationChannel",
    "DelegationRequest",
    "DelegationResponse",
    "create_delegation_tools",
    "is_delegation_tool",
    "response_outcome",
    "target_of",
]
