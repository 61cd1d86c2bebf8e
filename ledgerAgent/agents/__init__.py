"""Decision-step helpers and interfaces."""

from .factory import invoke_decider
from .interfaces import ModelResolver

__all__ = ["invoke_decider", "ModelResolver"]
