"""Task session: the coordinator's master transcript plus the task's files."""

from __future__ import annotations

from dataclasses import dataclass, field

from ledgerAgent.attachments.relay import AttachmentRelay
from ledgerAgent.transcript.transcript import Transcript


@dataclass(frozen=True)
class TaskSession:
    """Everything that outlives a single turn.

    The coordinator returns a new session after each turn and is the only
    party that appends to ``transcript``.
    """

    transcript: Transcript = field(default_factory=Transcript)
    relay: AttachmentRelay = field(default_factory=AttachmentRelay)

    @property
    def task_id(self) -> str:
        return self.transcript.task_id

    @property
    def version(self) -> int:
        return self.transcript.version
