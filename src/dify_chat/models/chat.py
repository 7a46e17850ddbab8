# Data models shared by the chat state layer, the provider client and the UI.

from __future__ import annotations

import datetime as _dt
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional

MessageRole = Literal["user", "assistant", "system"]
FileCategory = Literal["image", "audio", "video", "document"]
_UTC = _dt.timezone.utc
TITLE_ELLIPSIS = "..."


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_UTC)


def new_message_id() -> str:
    """Generate a stable unique identifier for messages."""
    return str(uuid.uuid4())


def new_draft_key() -> str:
    """Key used for a conversation the provider has not named yet."""
    return f"draft-{uuid.uuid4().hex[:12]}"


def is_draft_key(key: str) -> bool:
    return key.startswith("draft-")


def derive_title(text: str, limit: int = 30) -> str:
    """Short label for the conversation picker, truncated with an ellipsis."""

    stripped = text.strip()
    if len(stripped) > limit:
        return f"{stripped[:limit]}{TITLE_ELLIPSIS}"
    return stripped


def parse_timestamp(value: Any) -> Optional[_dt.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, _dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=_UTC)
    if isinstance(value, (int, float)):
        return _dt.datetime.fromtimestamp(value, _UTC)
    parsed = _dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=_UTC)


def _format_timestamp(value: Optional[_dt.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class ResourceCitation:
    """Retrieval excerpt the provider used to ground an answer."""

    document_name: str
    segment_position: int
    content: str
    score: float

    @property
    def display_score(self) -> float:
        # Upstream may emit values outside [0, 1]; only the rendered value is clamped.
        return min(1.0, max(0.0, float(self.score)))

    @property
    def display_percent(self) -> int:
        return round(self.display_score * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_name": self.document_name,
            "segment_position": self.segment_position,
            "content": self.content,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ResourceCitation":
        return cls(
            document_name=str(payload.get("document_name") or ""),
            segment_position=int(payload.get("segment_position") or 0),
            content=str(payload.get("content") or ""),
            score=float(payload.get("score") or 0.0),
        )


@dataclass(slots=True)
class Attachment:
    """File attached to a user message, local first and confirmed later."""

    local_id: str
    file_name: str
    file_size: int
    file_type: str
    persistent_id: Optional[str] = None
    url: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.persistent_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local_id": self.local_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "file_type": self.file_type,
            "persistent_id": self.persistent_id,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Attachment":
        return cls(
            local_id=str(payload["local_id"]),
            file_name=str(payload.get("file_name") or ""),
            file_size=int(payload.get("file_size") or 0),
            file_type=str(payload.get("file_type") or ""),
            persistent_id=payload.get("persistent_id"),
            url=payload.get("url"),
        )


@dataclass(slots=True)
class ServerAttachment:
    """Provider confirmation for one uploaded file."""

    persistent_id: Optional[str] = None
    url: Optional[str] = None


@dataclass(slots=True)
class StagedFile:
    """Raw file picked in the composer before submission."""

    name: str
    size: int
    content_type: str
    data: bytes = b""


@dataclass(slots=True)
class Message:
    """Single turn in a conversation."""

    id: str
    role: MessageRole
    content: str = ""
    resources: List[ResourceCitation] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    created_at: Optional[_dt.datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "resources": [resource.to_dict() for resource in self.resources],
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "created_at": _format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Message":
        return cls(
            id=str(payload["id"]),
            role=payload["role"],
            content=str(payload.get("content") or ""),
            resources=[ResourceCitation.from_dict(item) for item in payload.get("resources") or []],
            attachments=[Attachment.from_dict(item) for item in payload.get("attachments") or []],
            created_at=parse_timestamp(payload.get("created_at")),
        )


@dataclass(slots=True)
class ConversationSummary:
    """Entry in the conversation picker."""

    conversation_id: str
    title: str
    updated_at: _dt.datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "title": self.title,
            "updated_at": _format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConversationSummary":
        return cls(
            conversation_id=str(payload["conversation_id"]),
            title=str(payload.get("title") or ""),
            updated_at=parse_timestamp(payload.get("updated_at")) or utcnow(),
        )


@dataclass(slots=True)
class ComposerState:
    """Input buffer of the message composer."""

    text: str = ""
    staged_files: List[StagedFile] = field(default_factory=list)


@dataclass(slots=True)
class UsageStatus:
    """Verdict of the usage gate for the current user."""

    can_use: bool = True
    upload_disabled: bool = False
    reason: Optional[str] = None
    chat_count: int = 0
    upload_count: int = 0


@dataclass(slots=True)
class ChatState:
    """Store value holding every conversation the session has touched."""

    timelines: Dict[str, List[Message]] = field(default_factory=dict)
    resources: Dict[str, List[ResourceCitation]] = field(default_factory=dict)
    conversations: List[ConversationSummary] = field(default_factory=list)
    active_key: str = field(default_factory=new_draft_key)
    active_conversation_id: Optional[str] = None
    in_flight: Dict[str, str] = field(default_factory=dict)  # submission token -> conversation key
    composer: ComposerState = field(default_factory=ComposerState)
    usage: Optional[UsageStatus] = None

    def messages_for(self, key: str) -> List[Message]:
        return self.timelines.get(key, [])

    @property
    def active_messages(self) -> List[Message]:
        return self.messages_for(self.active_key)

    def message_index(self, key: str, message_id: str) -> Optional[int]:
        for idx, msg in enumerate(self.messages_for(key)):
            if msg.id == message_id:
                return idx
        return None

    @property
    def sending_keys(self) -> List[str]:
        return list(self.in_flight.values())

    def is_sending(self, key: str) -> bool:
        return key in self.in_flight.values()
