"""Attachment relay: user-supplied files kept for the life of a task.

Files are numbered from 1 in arrival order. Later turns append with the
numbering continuing, so "Fil 2" keeps meaning the same file until the user
explicitly replaces the set. The relay is immutable and travels with every
delegation, so a worker can upload a file several turns after it arrived.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from ledgerAgent.utils.error_handler import MissingInformationError

LOGGER = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<type>[^;,]+)?(?:;[^,]*)?;base64,", re.IGNORECASE)


@dataclass(frozen=True)
class PendingAttachment:
    """One file from the user.

    Attributes:
        name: original file name
        media_type: MIME type (``image/jpeg``, ``application/pdf`` ...)
        payload: raw bytes, or base64 text / a base64 data URL
        ordinal: 1-based position in the relay
    """

    name: str
    media_type: str
    payload: Union[bytes, str]
    ordinal: int = 0

    @property
    def label(self) -> str:
        return f"Fil {self.ordinal}: {self.name}"

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    def content_bytes(self) -> bytes:
        if isinstance(self.payload, bytes):
            return self.payload
        data = _DATA_URL.sub("", self.payload.strip())
        try:
            return base64.b64decode(data, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Attachment {self.name} is not valid base64") from e

    def data_url(self) -> str:
        if isinstance(self.payload, str) and _DATA_URL.match(self.payload):
            return self.payload
        encoded = base64.b64encode(self.content_bytes()).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


def _coerce(item: Union[PendingAttachment, Mapping[str, Any]]) -> PendingAttachment:
    if isinstance(item, PendingAttachment):
        return item
    return PendingAttachment(
        name=str(item.get("name") or "vedlegg"),
        media_type=str(item.get("type") or item.get("media_type") or "application/octet-stream"),
        payload=item.get("data") if item.get("data") is not None else item.get("payload", b""),
    )


@dataclass(frozen=True)
class AttachmentRelay:
    """Ordered, task-scoped list of pending attachments."""

    attachments: Tuple[PendingAttachment, ...] = ()

    @classmethod
    def from_files(cls, files: Iterable[Union[PendingAttachment, Mapping[str, Any]]]) -> "AttachmentRelay":
        return cls().offer(files)

    def offer(
        self,
        files: Optional[Iterable[Union[PendingAttachment, Mapping[str, Any]]]],
        supersede: bool = False,
    ) -> "AttachmentRelay":
        """Return a relay with ``files`` added.

        Args:
            files: new files from the current turn (dicts with name/type/data, or attachments)
            supersede: replace the existing set instead of appending

        Returns:
            The next relay; ordinals of existing files never change unless superseded
        """
        incoming = [_coerce(f) for f in (files or [])]
        if not incoming and not supersede:
            return self
        base: Tuple[PendingAttachment, ...] = () if supersede else self.attachments
        start = len(base)
        numbered = tuple(replace(a, ordinal=start + i) for i, a in enumerate(incoming, 1))
        if supersede:
            LOGGER.info(f"Attachment set replaced with {len(numbered)} file(s)")
        return AttachmentRelay(attachments=base + numbered)

    def __len__(self) -> int:
        return len(self.attachments)

    def __iter__(self) -> Iterator[PendingAttachment]:
        return iter(self.attachments)

    def __bool__(self) -> bool:
        return bool(self.attachments)

    def get(self, ordinal: int) -> PendingAttachment:
        for attachment in self.attachments:
            if attachment.ordinal == ordinal:
                return attachment
        labels = ", ".join(a.label for a in self.attachments) or "ingen filer"
        raise MissingInformationError(
            f"Jeg finner ikke fil nummer {ordinal}. Tilgjengelige filer: {labels}. Hvilken fil mener du?"
        )

    def select(self, ordinal: Optional[int] = None) -> List[PendingAttachment]:
        """One file by ordinal, or every file when ``ordinal`` is None."""
        if ordinal is None:
            return list(self.attachments)
        return [self.get(ordinal)]

    def newest(self, count: int) -> List[PendingAttachment]:
        return list(self.attachments[-count:]) if count > 0 else []

    def describe(self, ordinals: Optional[Sequence[int]] = None) -> str:
        chosen = [a for a in self.attachments if ordinals is None or a.ordinal in ordinals]
        if not chosen:
            return ""
        lines = [f"📎 Vedlagte filer ({len(chosen)} stk):"]
        lines.extend(f"- {a.label} ({a.media_type})" for a in chosen)
        return "\n".join(lines)

    def content_parts(self, ordinals: Optional[Sequence[int]] = None, limit: int = 4) -> List[Dict[str, Any]]:
        """Image parts for a multi-part user turn (vision-capable recipients only)."""
        parts: List[Dict[str, Any]] = []
        for attachment in self.attachments:
            if ordinals is not None and attachment.ordinal not in ordinals:
                continue
            if not attachment.is_image or len(parts) >= limit:
                continue
            parts.append({"type": "image_url", "image_url": {"url": attachment.data_url()}})
        return parts

    async def upload(self, client, entity_type: str, entity_id: int, ordinal: Optional[int] = None) -> Dict[str, Any]:
        """Upload one file (or all) to an existing entity.

        Files whose name is already attached to the entity are skipped,
        so a retried upload never duplicates a document.

        Returns:
            ``{"uploaded": [...names], "skipped": [...names], "errors": [...]}``
        """
        files = self.select(ordinal)
        existing = await client.list_attachments(entity_type, entity_id)
        existing_names = {str(a.get("filename") or a.get("name") or "") for a in existing}

        uploaded: List[str] = []
        skipped: List[str] = []
        errors: List[str] = []
        for attachment in files:
            if attachment.name in existing_names:
                skipped.append(attachment.name)
                continue
            try:
                await client.add_attachment(
                    entity_type,
                    entity_id,
                    attachment.name,
                    attachment.media_type,
                    attachment.content_bytes(),
                )
            except (ValueError, OSError) as e:
                LOGGER.warning(f"Upload of {attachment.name} to {entity_type} {entity_id} failed: {e}")
                errors.append(attachment.name)
                continue
            uploaded.append(attachment.name)
        return {"uploaded": uploaded, "skipped": skipped, "errors": errors}
