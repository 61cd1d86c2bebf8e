"""Logging utilities for ledgerAgent."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


PREVIEW_LIMIT = 500


def setup_logging(
    level: Optional[int] = None,
    log_dir: Optional[str] = None,
    observability: Any = None,
) -> logging.Logger:
    """Setup logging configuration for ledgerAgent.

    Args:
        level: Logging level for the file handler (default: observability.log_level)
        log_dir: Directory for log files (default: observability.log_dir)
        observability: ObservabilitySettings (default: settings from the environment);
            its log_prompt_max_length caps the payload previews in debug logs

    Returns:
        Configured logger instance
    """
    global PREVIEW_LIMIT
    if observability is None:
        from ledgerAgent.config.settings import get_settings
        observability = get_settings().observability
    if level is None:
        level = logging.getLevelName(str(observability.log_level).upper())
        if not isinstance(level, int):
            level = logging.INFO
    if log_dir is None:
        log_dir = observability.log_dir
    PREVIEW_LIMIT = observability.log_prompt_max_length

    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"ledgeragent_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    # Root logger for all ledgerAgent.* modules
    logger = logging.getLogger("ledgerAgent")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    logger.handlers = []

    # File handler (detailed logs)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("ledgerAgent session started")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def _preview(value: Any, limit: Optional[int] = None) -> str:
    limit = limit or PREVIEW_LIMIT
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    if len(text) > limit:
        return text[:limit] + "... (truncated)"
    return text


def log_delegation(logger: logging.Logger, origin_id: str, target_id: str, task: str, call_stack: tuple = ()) -> None:
    """Log an outgoing delegation.

    Args:
        logger: Logger instance
        origin_id: Delegating party
        target_id: Receiving worker
        task: Task text
        call_stack: Current delegation chain
    """
    chain = " → ".join(list(call_stack) + [target_id]) if call_stack else target_id
    logger.info(f"Delegation: {origin_id} → {target_id} (chain: {chain})")
    logger.debug(f"  Task: {_preview(task)}")


def log_delegation_result(logger: logging.Logger, target_id: str, success: bool, detail: str = "") -> None:
    """Log the outcome of a delegation.

    Args:
        logger: Logger instance
        target_id: Worker that responded
        success: Whether the worker reported success
        detail: Result or error preview
    """
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Delegation result: {target_id} - {status}")
    if detail:
        logger.debug(f"  Detail: {_preview(detail)}")


def log_action_call(logger: logging.Logger, action_name: str, args: Dict[str, Any]) -> None:
    """Log action invocation.

    Args:
        logger: Logger instance
        action_name: Name of the action being called
        args: Action arguments
    """
    logger.info(f"Action call: {action_name}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, indent=2, default=str)}")


def log_action_result(logger: logging.Logger, action_name: str, result: Any, success: bool = True) -> None:
    """Log action execution result.

    Args:
        logger: Logger instance
        action_name: Name of the action
        result: Action outcome
        success: Whether the action succeeded
    """
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Action result: {action_name} - {status}")
    logger.debug(f"  Result: {_preview(result)}")


def log_policy_decision(logger: logging.Logger, kind: str, reason: str = "") -> None:
    """Log the coordinator's policy classification of a turn."""
    logger.info(f"Policy decision: {kind}")
    if reason:
        logger.debug(f"  Reason: {reason}")


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    logger.info(f"Routing decision from {from_node}: → {decision}")
    if reason:
        logger.info(f"  → Reason: {reason}")


def log_node_entry(logger: logging.Logger, node_name: str, state: Dict[str, Any]) -> None:
    """Log node entry with a short state snapshot.

    Args:
        logger: Logger instance
        node_name: Name of the node being entered
        state: Current state dictionary
    """
    logger.debug(f"{'#' * 20} ENTERING NODE: {node_name} {'#' * 20}")
    logger.debug(f"  - loops: {state.get('loops')}/{state.get('max_loops')}")
    logger.debug(f"  - messages: {len(state.get('messages', []))}")
    if state.get("worker_id"):
        logger.debug(f"  - worker: {state.get('worker_id')}")


def log_node_exit(logger: logging.Logger, node_name: str, updates: Dict[str, Any]) -> None:
    """Log node exit with state updates.

    Args:
        logger: Logger instance
        node_name: Name of the node being exited
        updates: State updates returned by the node
    """
    logger.debug(f"{'#' * 20} EXITING NODE: {node_name} {'#' * 20}")
    for key, value in updates.items():
        if key == "messages":
            logger.debug(f"  - messages: +{len(value)} new messages")
        else:
            logger.debug(f"  - {key}: {_preview(value, 200)}")


def log_user_message(logger: logging.Logger, content: str) -> None:
    """Log user input."""
    logger.info(f"User input: {content[:100]}{'...' if len(content) > 100 else ''}")


def log_agent_response(logger: logging.Logger, content: str) -> None:
    """Log assistant reply."""
    logger.info(f"Agent response: {content[:100]}{'...' if len(content) > 100 else ''}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.exception("Full traceback:", exc_info=error)


# Singleton logger instance
_global_logger = None


def get_logger() -> logging.Logger:
    """Get or create the global logger instance.

    Returns:
        Global logger instance
    """
    global _global_logger
    if _global_logger is None:
        _global_logger = setup_logging()
    return _global_logger
