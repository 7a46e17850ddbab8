"""Append-ordered message lists, one per conversation key."""

from __future__ import annotations

import dataclasses
from typing import List, Optional, Sequence

from dify_chat.models.chat import (
    ChatState,
    Message,
    ResourceCitation,
    ServerAttachment,
    new_message_id,
    utcnow,
)
from dify_chat.services.logging import StructuredLogger

from .attachments import AttachmentRegistrar
from .resources import with_entry
from .store import ChatStore


class MessageTimeline:
    """Writer for ``ChatState.timelines``.

    Every operation names the conversation key explicitly. Messages are
    located by id; callers must not hold list indices across an await. Only
    ``content`` and ``attachments`` change after append, and the whole list
    is swapped only through :meth:`replace_all`.
    """

    def __init__(
        self,
        store: ChatStore,
        *,
        registrar: AttachmentRegistrar | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._store = store
        self._logger = logger or StructuredLogger("dify-chat.timeline")
        self._registrar = registrar or AttachmentRegistrar(self._logger)

    # ------------------------------------------------------------------ reads
    def messages(self, key: str) -> List[Message]:
        return list(self._store.value.messages_for(key))

    def find(self, key: str, message_id: str) -> Optional[Message]:
        for message in self._store.value.messages_for(key):
            if message.id == message_id:
                return message
        return None

    # ------------------------------------------------------------------ writes
    def append(self, key: str, message: Message) -> str:
        existing_ids = {item.id for item in self._store.value.messages_for(key)}
        message_id = message.id
        if not message_id or message_id in existing_ids:
            if message_id:
                self._logger.warning("timeline.append.duplicate_id", key=key, message_id=message_id)
            message_id = new_message_id()
        entry = dataclasses.replace(
            message,
            id=message_id,
            created_at=message.created_at or utcnow(),
            resources=list(message.resources) if message.role == "assistant" else [],
            attachments=list(message.attachments) if message.role == "user" else [],
        )

        def updater(prev: ChatState):
            changes = {"timelines": self._with_messages(prev, key, [*prev.messages_for(key), entry])}
            if entry.role == "assistant" and entry.resources:
                changes["resources"] = with_entry(prev.resources, key, entry.resources)
            return changes

        self._store.update(updater)
        return message_id

    def update_content(
        self,
        key: str,
        message_id: str,
        content: str,
        *,
        resources: Optional[Sequence[ResourceCitation]] = None,
    ) -> bool:
        """Replace a message's content with the cumulative text.

        ``resources`` lets the last chunk of a streamed reply attach its
        citations; it is ignored for anything but assistant messages.
        """

        found = False
        ignored_resources = False

        def updater(prev: ChatState):
            nonlocal found, ignored_resources
            idx = prev.message_index(key, message_id)
            if idx is None:
                return None
            found = True
            messages = list(prev.messages_for(key))
            current = messages[idx]
            fields = {"content": content}
            changes = {}
            if resources is not None:
                if current.role == "assistant":
                    fields["resources"] = list(resources)
                    if resources:
                        changes["resources"] = with_entry(prev.resources, key, resources)
                else:
                    ignored_resources = True
            messages[idx] = dataclasses.replace(current, **fields)
            changes["timelines"] = self._with_messages(prev, key, messages)
            return changes

        self._store.update(updater)
        if not found:
            self._logger.warning("timeline.update.missing", key=key, message_id=message_id)
        elif ignored_resources:
            self._logger.warning("timeline.update.resources_ignored", key=key, message_id=message_id)
        return found

    def reconcile_attachments(
        self,
        key: str,
        message_id: str,
        server_attachments: Sequence[ServerAttachment],
    ) -> bool:
        reason: Optional[str] = None

        def updater(prev: ChatState):
            nonlocal reason
            idx = prev.message_index(key, message_id)
            if idx is None:
                reason = "missing"
                return None
            messages = list(prev.messages_for(key))
            current = messages[idx]
            if current.role != "user":
                reason = "not_user"
                return None
            if not current.attachments:
                reason = "no_attachments"
                return None
            merged = self._registrar.merge_server_result(current.attachments, server_attachments)
            messages[idx] = dataclasses.replace(current, attachments=merged)
            return {"timelines": self._with_messages(prev, key, messages)}

        self._store.update(updater)
        if reason is not None:
            self._logger.warning(f"timeline.reconcile.{reason}", key=key, message_id=message_id)
            return False
        return True

    def replace_all(self, key: str, messages: Sequence[Message]) -> None:
        """Hydrate or reset a timeline; the resource cache is left alone."""

        entries = [
            dataclasses.replace(message, id=message.id or new_message_id(), created_at=message.created_at or utcnow())
            for message in messages
        ]
        self._store.update(lambda prev: {"timelines": self._with_messages(prev, key, entries)})
        self._logger.debug("timeline.replaced", key=key, count=len(entries))

    def clear(self, key: str) -> None:
        self._store.update(lambda prev: {"timelines": self._with_messages(prev, key, [])})

    @staticmethod
    def _with_messages(prev: ChatState, key: str, messages: List[Message]):
        timelines = dict(prev.timelines)
        timelines[key] = messages
        return timelines
