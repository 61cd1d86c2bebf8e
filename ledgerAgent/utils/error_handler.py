"""Unified error handling for ledgerAgent nodes, actions and the ledger client."""

from __future__ import annotations

import asyncio
import functools
import logging
import re
from typing import Any, Callable, Optional

from langchain_core.messages import AIMessage

LOGGER = logging.getLogger(__name__)


class LedgerAgentError(Exception):
    """Base exception for ledgerAgent errors.

    ``user_message`` is the plain-language text that may reach the user;
    ``str(error)`` keeps the technical detail for the logs.
    """

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


# ========== Collaborator (ledger API) failures ==========

class LedgerApiError(LedgerAgentError):
    """The accounting system rejected a request."""

    def __init__(
        self,
        message: str,
        user_message: str = None,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, user_message or "Regnskapssystemet avviste forespørselen.")
        self.status = status
        self.code = code


class RateLimitError(LedgerApiError):
    """Rate limit exceeded (HTTP 429). Transient, retried with backoff."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(
            message,
            "Regnskapssystemet har for mange forespørsler akkurat nå. Prøv igjen om litt.",
            status=429,
            code="rate_limited",
        )
        self.retry_after = retry_after


class CorrectableError(LedgerApiError):
    """Structural failure that allows one deterministic local correction.

    Attributes:
        code: correction key (``invalid_date``, ``stale_reference`` ...)
        field: the offending argument name, when known
    """

    def __init__(self, message: str, user_message: str = None, code: str = "", field: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, user_message, status=status, code=code)
        self.field = field


class InvalidDateError(CorrectableError):
    def __init__(self, message: str, field: Optional[str] = "date", status: Optional[int] = 400):
        super().__init__(message, "Datoen ble ikke godtatt av regnskapssystemet.", code="invalid_date", field=field, status=status)


class StaleReferenceError(CorrectableError):
    def __init__(self, message: str, field: Optional[str] = None, status: Optional[int] = 404):
        super().__init__(message, "En referanse peker til noe som ikke finnes lenger.", code="stale_reference", field=field, status=status)


class MissingPreconditionError(CorrectableError):
    """A remedial action must run first (e.g. an uninitialised document counter)."""


class CounterNotInitializedError(MissingPreconditionError):
    def __init__(self, message: str, kind: str = "invoice", status: Optional[int] = 409):
        super().__init__(
            message,
            "Nummerserien er ikke satt opp ennå.",
            code="counter_not_initialized",
            field=kind,
            status=status,
        )
        self.kind = kind


# ========== Conversation-level failures ==========

class MissingInformationError(LedgerAgentError):
    """Required input is missing; surfaces to the user as a single question."""

    def __init__(self, question: str):
        super().__init__(question, question)
        self.question = question


class DelegationError(LedgerAgentError):
    """A delegation could not be carried out."""


class SelfDelegationError(DelegationError, ValueError):
    """A delegation request targeting its own origin."""


# ========== Plain-language conversion ==========

_TECHNICAL_PATTERNS = [
    re.compile(r"\{.*\}", re.DOTALL),                       # JSON fragments
    re.compile(r"\b(HTTP|status(?: code)?)\s*:?\s*\d{3}\b", re.IGNORECASE),
    re.compile(r"\b[1-5]\d{2}\s+(Bad Request|Not Found|Conflict|Unauthorized|Forbidden|Internal Server Error|Unprocessable Entity|Too Many Requests)\b", re.IGNORECASE),
    re.compile(r"https?://\S+"),
    re.compile(r"\b(?:tool_call_id|call_[A-Za-z0-9]+|Traceback.*)\b"),
    re.compile(r"\b[a-z]+_agent\b"),                        # internal worker ids
]


def plain_language_error(error: Any, fallback: str = "Noe gikk galt i regnskapssystemet.") -> str:
    """Turn an exception or raw error text into something safe to show a user.

    Exceptions from the taxonomy above carry a curated ``user_message``;
    anything else is scrubbed of status codes, payload fragments, URLs and
    internal identifiers.

    Args:
        error: exception instance or raw error string
        fallback: text to use when nothing readable remains

    Returns:
        Plain-language error text
    """
    if isinstance(error, LedgerAgentError):
        return error.user_message
    if isinstance(error, asyncio.TimeoutError):
        return "Det tok for lang tid å få svar. Prøv igjen om litt."

    text = str(error or "")
    for pattern in _TECHNICAL_PATTERNS:
        text = pattern.sub("", text)
    text = re.sub(r"\s{2,}", " ", text).strip(" :;,-")
    if len(text) < 8:
        return fallback
    return text


def with_error_boundary(node_name: str):
    """Decorator to add error boundary to graph nodes.

    Catches exceptions and converts them to plain-language assistant
    messages so one failing node never tears down the whole turn.

    Args:
        node_name: Name of the node for logging

    Example:
        @with_error_boundary("route")
        async def route_node(state: CoordinatorState) -> dict:
            ...
    """
    def _failure(e: Exception) -> dict:
        if isinstance(e, RateLimitError):
            LOGGER.error(f"{node_name} rate limit: {e}")
            content = "🚦 Regnskapssystemet har for mange forespørsler. Prøv igjen om et minutt."
        elif isinstance(e, asyncio.TimeoutError):
            LOGGER.error(f"{node_name} timeout: {e}")
            content = "⏱️ Det tok for lang tid å få svar. Prøv igjen om litt."
        elif isinstance(e, LedgerAgentError):
            LOGGER.error(f"{node_name} error: {e}")
            content = f"Jeg fikk ikke fullført dette: {e.user_message}"
        else:
            LOGGER.exception(f"{node_name} unexpected error", exc_info=e)
            content = "Noe gikk galt under behandlingen. Prøv igjen, eller beskriv oppgaven litt annerledes."
        return {"messages": [AIMessage(content=content)], "error": content}

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def sync_wrapper(state: Any) -> Any:
            try:
                return func(state)
            except Exception as e:
                return _failure(e)

        @functools.wraps(func)
        async def async_wrapper(state: Any) -> Any:
            try:
                return await func(state)
            except Exception as e:
                return _failure(e)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
