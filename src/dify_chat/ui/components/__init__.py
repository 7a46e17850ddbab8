from .composer import Composer
from .messages import MessageList, MessageView
from .resources import ResourcePanel
from .sidebar import ConversationSidebar

__all__ = ["Composer", "ConversationSidebar", "MessageList", "MessageView", "ResourcePanel"]
