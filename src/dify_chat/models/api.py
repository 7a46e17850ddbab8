"""Request and reply contracts for the hosted conversational-AI provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .chat import FileCategory, ResourceCitation, ServerAttachment


@dataclass(slots=True)
class RemoteFile:
    """File reference forwarded with a chat request."""

    category: FileCategory
    upload_ref: str
    transfer_method: str = "local_file"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.category,
            "transfer_method": self.transfer_method,
            "upload_file_id": self.upload_ref,
        }


@dataclass(slots=True)
class ChatRequest:
    text: str
    user_id: str
    conversation_id: Optional[str] = None
    attachments: List[RemoteFile] = field(default_factory=list)


@dataclass(slots=True)
class ChatReply:
    """Reshaped provider answer."""

    answer_text: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    resource_citations: List[ResourceCitation] = field(default_factory=list)
    confirmed_attachments: List[ServerAttachment] = field(default_factory=list)
    tokens_used: int = 0


@dataclass(slots=True)
class ReplyDelta:
    """Streaming progress carrying the cumulative answer so far."""

    answer_text: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
