"""Project root path detection - works regardless of working directory."""

from __future__ import annotations

from pathlib import Path
from functools import lru_cache


@lru_cache(maxsize=1)
def get_project_root() -> Path:
    """Get absolute path to project root directory.

    This works by finding the directory containing the 'ledgerAgent' package,
    regardless of the current working directory.

    Returns:
        Path: Absolute path to project root

    Example:
        >>> root = get_project_root()
        >>> config_file = root / "ledgerAgent" / "config" / "workers.yaml"
    """
    # project_root.py -> config/ -> ledgerAgent/ -> project_root/
    project_root = Path(__file__).resolve().parent.parent.parent

    if not (project_root / "ledgerAgent").exists():
        raise RuntimeError(
            f"Could not locate project root. Expected 'ledgerAgent' directory at {project_root}"
        )

    return project_root


def resolve_project_path(relative_path: str | Path) -> Path:
    """Resolve a path relative to project root.

    Args:
        relative_path: Path relative to project root (e.g., "logs", "ledgerAgent/config/workers.yaml")

    Returns:
        Path: Absolute path
    """
    return get_project_root() / relative_path


__all__ = ["get_project_root", "resolve_project_path"]
