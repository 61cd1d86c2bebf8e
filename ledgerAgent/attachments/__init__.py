"""Task-scoped attachment relay."""

from .relay import AttachmentRelay, PendingAttachment

__all__ = ["AttachmentRelay", "PendingAttachment"]
