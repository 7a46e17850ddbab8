"""Ordered conversation picker entries."""

from __future__ import annotations

import dataclasses
import datetime as _dt
from typing import Iterable, List, Optional

from dify_chat.models.chat import ConversationSummary, utcnow
from dify_chat.services.logging import StructuredLogger

from .store import ChatStore


def sort_summaries(summaries: Iterable[ConversationSummary]) -> List[ConversationSummary]:
    # sorted() stays stable with reverse=True, so ties keep their prior order.
    return sorted(summaries, key=lambda summary: summary.updated_at, reverse=True)


def upserted(summaries: Iterable[ConversationSummary], summary: ConversationSummary) -> List[ConversationSummary]:
    others = [item for item in summaries if item.conversation_id != summary.conversation_id]
    return sort_summaries([summary, *others])


class ConversationRegistry:
    """Upsert-by-id list of conversations, newest first.

    Entries are never removed; deletion and archival are left to the provider.
    """

    def __init__(self, store: ChatStore, logger: StructuredLogger | None = None) -> None:
        self._store = store
        self._logger = logger or StructuredLogger("dify-chat.registry")

    def upsert(self, summary: ConversationSummary) -> None:
        self._store.update(lambda prev: {"conversations": upserted(prev.conversations, summary)})

    def set_all(self, summaries: Iterable[ConversationSummary]) -> None:
        ordered = sort_summaries(summaries)
        self._store.update(lambda prev: {"conversations": ordered})
        self._logger.info("registry.loaded", count=len(ordered))

    def get(self, conversation_id: str) -> Optional[ConversationSummary]:
        for summary in self._store.value.conversations:
            if summary.conversation_id == conversation_id:
                return summary
        return None

    def list(self) -> List[ConversationSummary]:
        return list(self._store.value.conversations)

    def touch(self, conversation_id: str, updated_at: _dt.datetime | None = None) -> bool:
        existing = self.get(conversation_id)
        if existing is None:
            self._logger.warning("registry.touch.missing", conversation_id=conversation_id)
            return False
        self.upsert(dataclasses.replace(existing, updated_at=updated_at or utcnow()))
        return True
