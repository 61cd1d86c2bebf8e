"""Worker Card Schema

A worker card describes a specialist worker: identity, capabilities, skills and action factory.
The coordinator builds its routing catalog from the cards; each worker builds its delegation tools from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional


@dataclass(frozen=True, slots=True)
class WorkerSkill:
    """A kind of task the worker handles (listed in the routing catalog)

    Attributes:
        name: skill name (unique identifier)
        description: tells the coordinator when to delegate to this worker
        examples: typical user requests
    """

    name: str
    description: str
    examples: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class WorkerCapability:
    """A technical trait of a worker

    Known capabilities:
    - attachments: reads the user's files directly (images are passed inline)
    """

    name: str
    description: str = ""


@dataclass(frozen=True)
class WorkerCard:
    """Worker card: the full description of a specialist worker

    Attributes:
        # ========== Identity ==========
        id: unique worker id (e.g. "purchase_agent")
        name: display name
        description: short summary of its responsibilities

        # ========== Behaviour ==========
        factory: action factory ``build_actions(ctx) -> List[ActionSpec]``
        instructions: body of the worker's system prompt
        clarifiers: clarification checks run before the decision step (e.g. "vat_treatment")

        # ========== Capabilities & Skills ==========
        capabilities: technical capabilities
        skills: task kinds (for the coordinator's routing catalog)

        # ========== Metadata ==========
        tags: free-form tags
        enabled: whether the worker is enabled
    """

    # ========== Identity ==========
    id: str
    name: str
    description: str

    # ========== Behaviour ==========
    factory: Optional[Callable[..., Any]] = None
    instructions: str = ""
    clarifiers: List[str] = field(default_factory=list)

    # ========== Capabilities & Skills ==========
    capabilities: List[WorkerCapability] = field(default_factory=list)
    skills: List[WorkerSkill] = field(default_factory=list)

    # ========== Metadata ==========
    tags: List[str] = field(default_factory=list)
    enabled: bool = True

    def has_capability(self, capability_name: str) -> bool:
        return any(cap.name == capability_name for cap in self.capabilities)

    def capability_names(self) -> List[str]:
        return [cap.name for cap in self.capabilities]

    def delegation_targets(self, all_ids: Iterable[str]) -> List[str]:
        """Every worker id this worker may delegate to (never itself)."""
        return [worker_id for worker_id in all_ids if worker_id != self.id]

    def get_catalog_text(self) -> str:
        """Catalog entry for this worker (part of the coordinator's SystemMessage)

        Returns:
            Markdown description of the worker
        """
        lines = [f"## {self.id} - {self.name}", self.description, ""]

        if self.skills:
            lines.append("**Oppgaver:**")
            for skill in self.skills:
                lines.append(f"- **{skill.name}**: {skill.description}")
                if skill.examples:
                    lines.append(f"  - Eksempel: `{skill.examples[0]}`")
            lines.append("")

        if self.capabilities:
            lines.append(f"**Egenskaper**: {', '.join(self.capability_names())}")
            lines.append("")

        return "\n".join(lines)
