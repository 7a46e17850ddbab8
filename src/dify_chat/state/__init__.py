"""State container and the components that write to it."""

from .attachments import AttachmentRegistrar, classify_file_type
from .chat import ChatController
from .pipeline import SendOutcome, SendPipeline
from .registry import ConversationRegistry
from .resources import ResourceCache
from .store import ChatStore
from .timeline import MessageTimeline

__all__ = [
    "AttachmentRegistrar",
    "ChatController",
    "ChatStore",
    "ConversationRegistry",
    "MessageTimeline",
    "ResourceCache",
    "SendOutcome",
    "SendPipeline",
    "classify_file_type",
]
