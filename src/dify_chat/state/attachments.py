"""Attachment staging, classification and server reconciliation."""

from __future__ import annotations

import dataclasses
import time
from typing import Iterable, List, Optional, Sequence, Tuple

from dify_chat.models.chat import Attachment, FileCategory, ServerAttachment, StagedFile
from dify_chat.services.logging import StructuredLogger

# MIME types the file picker accepts; classification itself is prefix based.
ACCEPTED_FILE_TYPES = {
    "image": ("image/jpeg", "image/png", "image/gif", "image/webp"),
    "document": (
        "application/pdf",
        "text/plain",
        "text/csv",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ),
    "audio": ("audio/mpeg", "audio/wav", "audio/ogg"),
    "video": ("video/mp4", "video/webm", "video/ogg"),
}
_CATEGORY_PREFIXES: Tuple[Tuple[str, FileCategory], ...] = (
    ("image/", "image"),
    ("audio/", "audio"),
    ("video/", "video"),
)


def classify_file_type(mime: Optional[str]) -> FileCategory:
    """Route a MIME string to the provider's file category, ``document`` by default."""

    normalised = (mime or "").strip().lower()
    for prefix, category in _CATEGORY_PREFIXES:
        if normalised.startswith(prefix):
            return category
    return "document"


class AttachmentRegistrar:
    """Tracks files from local selection to provider confirmation."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger = logger or StructuredLogger("dify-chat.attachments")

    def stage_local_files(self, files: Sequence[StagedFile], *, timestamp: float | None = None) -> List[Attachment]:
        millis = int((time.time() if timestamp is None else timestamp) * 1000)
        return [
            Attachment(
                local_id=f"local-{millis}-{index}",
                file_name=file.name,
                file_size=file.size,
                file_type=file.content_type,
            )
            for index, file in enumerate(files)
        ]

    def merge_server_result(
        self,
        attachments: Sequence[Attachment],
        server_records: Sequence[ServerAttachment],
    ) -> List[Attachment]:
        """Pair local and server records by position; inputs are left untouched."""

        if len(server_records) != len(attachments):
            self._logger.warning(
                "attachments.merge.count_mismatch",
                local=len(attachments),
                server=len(server_records),
            )
        merged: List[Attachment] = []
        for index, attachment in enumerate(attachments):
            if index >= len(server_records):
                merged.append(dataclasses.replace(attachment))
                continue
            record = server_records[index]
            merged.append(
                dataclasses.replace(
                    attachment,
                    persistent_id=record.persistent_id or attachment.persistent_id,
                    url=record.url or attachment.url,
                )
            )
        return merged

    def validate_files(
        self,
        files: Iterable[StagedFile],
        *,
        max_files: int,
        max_file_size_mb: int,
        already_staged: int = 0,
    ) -> Tuple[List[StagedFile], List[str]]:
        """Apply the picker rules: accepted types, size cap and count cap."""

        accepted: List[StagedFile] = []
        rejected: List[str] = []
        allowed = {mime for group in ACCEPTED_FILE_TYPES.values() for mime in group}
        limit_bytes = max_file_size_mb * 1024 * 1024
        for file in files:
            if file.content_type not in allowed:
                rejected.append(f"{file.name}: unsupported file type")
            elif file.size > limit_bytes:
                rejected.append(f"{file.name}: larger than {max_file_size_mb} MB")
            elif already_staged + len(accepted) >= max_files:
                rejected.append(f"{file.name}: at most {max_files} files per message")
            else:
                accepted.append(file)
        if rejected:
            self._logger.info("attachments.rejected", count=len(rejected))
        return accepted, rejected
