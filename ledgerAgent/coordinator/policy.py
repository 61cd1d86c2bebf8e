"""Turn policy for the coordinator.

Classifies the user's turn before any routing happens:

- destructive / unscoped bulk → a clarifying question, no delegation
- broad / ambiguous → a narrowing question, no delegation
- acknowledgement → continue the latest action run (confirm or follow up)
- normal → routed by the decision step

Rules come from ``config/policy_rules.yaml`` with built-in fallbacks, the
same layering as a tool approval checker: configuration first, then the
built-in rules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ledgerAgent.accounting.rules import find_amounts
from ledgerAgent.config.project_root import resolve_project_path

LOGGER = logging.getLogger(__name__)

DEFAULT_POLICY_CONFIG = "ledgerAgent/config/policy_rules.yaml"


class TurnKind(str, Enum):
    DESTRUCTIVE_BULK = "destructive_bulk"
    BROAD = "broad"
    ACKNOWLEDGEMENT = "acknowledgement"
    NORMAL = "normal"


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of the policy check

    Attributes:
        kind: turn classification
        reason: why (for the logs)
        question: reply for turns that must not be delegated
    """

    kind: TurnKind
    reason: str = ""
    question: Optional[str] = None

    @property
    def blocks_delegation(self) -> bool:
        return self.kind in (TurnKind.DESTRUCTIVE_BULK, TurnKind.BROAD)


# ========== Built-in rules ==========

BUILTIN_RULES: Dict[str, Dict[str, Any]] = {
    "destructive_bulk": {
        "reason": "Bulk deletion without scope",
        "patterns": [
            r"\b(slett|fjern|annuller)\w*\s+(alle|alt|hele)\b",
        ],
        "question": (
            "Jeg gjør ikke sletting i bulk uten at vi avgrenser det først. "
            "Hvilke poster gjelder det, og for hvilken periode?"
        ),
    },
    "broad": {
        "reason": "Unscoped request",
        "patterns": [
            r"^\s*(fiks|ordne|rydd opp i)\s+(alt|regnskapet)\s*[.!?]*\s*$",
        ],
        "question": "Hva vil du at jeg skal se på først?",
    },
    "acknowledgement": {
        "patterns": [
            r"^\s*(ja|ok|greit|kjør|gjør det|bekreft\w*|stemmer)\s*[.!]*\s*$",
        ],
    },
    "attachment_followup": {
        "patterns": [
            r"\b(her er|vedlagt|legg(e)? ved|last(e)? opp)\b.*\b(kvittering|faktura|bilag|fil|vedlegg)\w*",
        ],
    },
}


class PolicyChecker:
    """Classifies user messages before any delegation."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: policy rules file (defaults to the bundled config)
        """
        if config_path is None:
            config_path = resolve_project_path(DEFAULT_POLICY_CONFIG)
        self.config_path = Path(config_path)
        self.rules = self._load_config()
        self._compiled = {
            section: [re.compile(p, re.IGNORECASE) for p in self._section(section).get("patterns", [])]
            for section in BUILTIN_RULES
        }

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            LOGGER.info(f"No policy config at {self.config_path}, using built-in rules")
            return {}
        with self.config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _section(self, name: str) -> Dict[str, Any]:
        configured = self.rules.get(name)
        if isinstance(configured, dict) and configured.get("patterns"):
            return {**BUILTIN_RULES[name], **configured}
        return BUILTIN_RULES[name]

    def _matches(self, section: str, text: str) -> bool:
        return any(p.search(text) for p in self._compiled[section])

    def classify(self, text: str) -> PolicyDecision:
        """Classify one user turn.

        Args:
            text: the user's message text

        Returns:
            PolicyDecision
        """
        for section, kind in (("destructive_bulk", TurnKind.DESTRUCTIVE_BULK), ("broad", TurnKind.BROAD)):
            if self._matches(section, text):
                config = self._section(section)
                return PolicyDecision(
                    kind=kind,
                    reason=str(config.get("reason", section)),
                    question=" ".join(str(config.get("question", "")).split()),
                )

        if self._matches("acknowledgement", text):
            return PolicyDecision(kind=TurnKind.ACKNOWLEDGEMENT, reason="Short confirmation")

        return PolicyDecision(kind=TurnKind.NORMAL)

    def is_attachment_followup(self, text: str) -> bool:
        """Files sent to complete something already created ("her er kvitteringen").

        An empty text counts; a text stating amounts describes something new.
        """
        if not text.strip():
            return True
        if find_amounts(text):
            return False
        return self._matches("attachment_followup", text) or self._matches("acknowledgement", text)

    def patterns(self, section: str) -> List[str]:
        return [p.pattern for p in self._compiled[section]]
