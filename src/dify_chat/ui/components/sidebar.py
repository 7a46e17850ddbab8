"""Conversation picker."""

from __future__ import annotations

from typing import Callable

import solara

from dify_chat.state import ChatController
from dify_chat.ui.hooks import use_chat_state


@solara.component
def ConversationSidebar(
    controller: ChatController,
    on_select: Callable[[str], None],
    on_new_chat: Callable[[], None],
):
    conversations = use_chat_state(controller.store, lambda s: s.conversations)
    active_key = use_chat_state(controller.store, lambda s: s.active_key)

    with solara.Column(classes=["dc-sidebar"], style={"gap": "0.25rem", "minWidth": "240px"}):
        solara.Button("New chat", icon_name="mdi-plus", color="primary", outlined=True, on_click=on_new_chat)
        if not conversations:
            solara.Text("No conversations yet.", classes=["caption", "text-medium-emphasis"])
        for summary in conversations:
            classes = ["dc-conversation"]
            if summary.conversation_id == active_key:
                classes.append("active")
            solara.Button(
                summary.title or "Untitled",
                text=True,
                classes=classes,
                on_click=lambda conversation_id=summary.conversation_id: on_select(conversation_id),
            )
