"""Shared helpers: logging, error handling, message processing."""

from .error_handler import (
    CorrectableError,
    CounterNotInitializedError,
    DelegationError,
    InvalidDateError,
    LedgerAgentError,
    LedgerApiError,
    MissingInformationError,
    MissingPreconditionError,
    RateLimitError,
    SelfDelegationError,
    StaleReferenceError,
    plain_language_error,
    with_error_boundary,
)
from .logging_utils import (
    get_logger,
    log_action_call,
    log_action_result,
    log_agent_response,
    log_delegation,
    log_delegation_result,
    log_error,
    log_node_entry,
    log_node_exit,
    log_policy_decision,
    log_routing_decision,
    log_user_message,
    setup_logging,
)
from .message_utils import (
    clean_message_history,
    is_attachment_part,
    parse_tool_content,
    stringify_content,
    truncate_messages_safely,
)

__all__ = [
    "CorrectableError",
    "CounterNotInitializedError",
    "DelegationError",
    "InvalidDateError",
    "LedgerAgentError",
    "LedgerApiError",
    "MissingInformationError",
    "MissingPreconditionError",
    "RateLimitError",
    "SelfDelegationError",
    "StaleReferenceError",
    "plain_language_error",
    "with_error_boundary",
    "get_logger",
    "log_action_call",
    "log_action_result",
    "log_agent_response",
    "log_delegation",
    "log_delegation_result",
    "log_error",
    "log_node_entry",
    "log_node_exit",
    "log_policy_decision",
    "log_routing_decision",
    "log_user_message",
    "setup_logging",
    "clean_message_history",
    "is_attachment_part",
    "parse_tool_content",
    "stringify_content",
    "truncate_messages_safely",
]
