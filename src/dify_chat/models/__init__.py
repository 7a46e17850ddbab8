"""Data contracts used across the application."""

from .api import ChatReply, ChatRequest, RemoteFile, ReplyDelta
from .chat import (
    Attachment,
    ChatState,
    ComposerState,
    ConversationSummary,
    Message,
    ResourceCitation,
    ServerAttachment,
    StagedFile,
    UsageStatus,
)

__all__ = [
    "Attachment",
    "ChatReply",
    "ChatRequest",
    "ChatState",
    "ComposerState",
    "ConversationSummary",
    "Message",
    "RemoteFile",
    "ReplyDelta",
    "ResourceCitation",
    "ServerAttachment",
    "StagedFile",
    "UsageStatus",
]
