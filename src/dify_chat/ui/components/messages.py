# Message list with attachments and inline citations.

from __future__ import annotations

from typing import List

import solara

from dify_chat.models.chat import Attachment, Message, ResourceCitation
from dify_chat.state import ChatController
from dify_chat.ui.hooks import use_chat_state


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


@solara.component
def AttachmentList(attachments: List[Attachment]):
    with solara.Row(classes=["dc-attachments"], style={"flexWrap": "wrap", "gap": "0.5rem"}):
        for attachment in attachments:
            label = f"{attachment.file_name} ({format_size(attachment.file_size)})"
            if attachment.url:
                solara.Button(label, icon_name="mdi-paperclip", text=True, href=attachment.url, target="_blank")
            else:
                # Not confirmed by the provider yet.
                solara.Text(label, classes=["caption", "text-medium-emphasis"])


@solara.component
def CitationList(resources: List[ResourceCitation]):
    with solara.Details(summary=f"Sources ({len(resources)})"):
        for citation in resources:
            solara.Text(
                f"{citation.document_name} #{citation.segment_position} - {citation.display_percent}%",
                classes=["caption"],
            )


@solara.component
def MessageView(message: Message):
    is_user = message.role == "user"
    with solara.lab.ChatMessage(user=is_user, name="You" if is_user else "Assistant", notch=True):
        solara.Markdown(message.content or "")
        if message.attachments:
            AttachmentList(message.attachments)
        if message.resources:
            CitationList(message.resources)


@solara.component
def MessageList(controller: ChatController):
    state = use_chat_state(controller.store)
    messages = state.active_messages
    sending = state.is_sending(state.active_key)

    with solara.lab.ChatBox(classes=["dc-messages"]):
        if not messages:
            solara.Text("Send a message to start the conversation.", classes=["body-2", "text-medium-emphasis"])
        for message in messages:
            MessageView(message).key(message.id)
        if sending:
            solara.ProgressLinear(indeterminate=True)
