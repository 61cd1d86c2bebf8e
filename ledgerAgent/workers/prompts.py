"""Prompt Template Builder

Renders the worker and coordinator system prompts from sandboxed Jinja2 templates.
Templates live in ``ledgerAgent/config/prompt_templates``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Optional

from jinja2.sandbox import SandboxedEnvironment

from ledgerAgent.accounting.rules import today_iso
from ledgerAgent.config.project_root import resolve_project_path


class PromptBuilder:
    """Builds system prompts from templates."""

    TEMPLATE_DIR = "ledgerAgent/config/prompt_templates"
    WORKER_TEMPLATE = f"{TEMPLATE_DIR}/worker.jinja2"
    COORDINATOR_TEMPLATE = f"{TEMPLATE_DIR}/coordinator.jinja2"

    @staticmethod
    @lru_cache(maxsize=8)
    def _load_template(template_path: str) -> str:
        full_path = resolve_project_path(template_path)
        with open(full_path, "r", encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def _render_template(template: str, params: Dict[str, Any]) -> str:
        env = SandboxedEnvironment(trim_blocks=True, lstrip_blocks=True)
        return env.from_string(template).render(**params).strip()

    @classmethod
    def worker_prompt(
        cls,
        *,
        name: str,
        description: str,
        instructions: str = "",
        delegation_targets: Optional[List[Dict[str, str]]] = None,
        attachments: str = "",
    ) -> str:
        """Render a worker system prompt

        Args:
            name: worker display name
            description: what the worker is responsible for
            instructions: domain rules (from the domain module)
            delegation_targets: ``[{"id": ..., "description": ...}]``, excluding the worker itself
            attachments: listing of the files in the task
        """
        template = cls._load_template(cls.WORKER_TEMPLATE)
        return cls._render_template(template, {
            "name": name,
            "description": description,
            "instructions": instructions.strip(),
            "delegation_targets": delegation_targets or [],
            "attachments": attachments,
            "today": today_iso(),
        })

    @classmethod
    def coordinator_prompt(cls, *, catalog: str, attachments: str = "", directive: str = "") -> str:
        template = cls._load_template(cls.COORDINATOR_TEMPLATE)
        return cls._render_template(template, {
            "catalog": catalog,
            "attachments": attachments,
            "directive": directive,
            "today": today_iso(),
        })
