"""Per-conversation cache of the citations backing the latest answer."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from dify_chat.models.chat import Message, ResourceCitation
from dify_chat.services.logging import StructuredLogger

from .store import ChatStore

ResourceMap = Dict[str, List[ResourceCitation]]


def with_entry(mapping: ResourceMap, key: str, resources: Sequence[ResourceCitation]) -> ResourceMap:
    """Copy of ``mapping`` with ``key`` overwritten, never merged."""

    updated = dict(mapping)
    updated[key] = list(resources)
    return updated


class ResourceCache:
    def __init__(self, store: ChatStore, logger: StructuredLogger | None = None) -> None:
        self._store = store
        self._logger = logger or StructuredLogger("dify-chat.resources")

    def set(self, key: str, resources: Sequence[ResourceCitation]) -> None:
        self._store.update(lambda prev: {"resources": with_entry(prev.resources, key, resources)})
        self._logger.debug("resources.set", key=key, count=len(resources))

    def get(self, key: str) -> Optional[List[ResourceCitation]]:
        entry = self._store.value.resources.get(key)
        return list(entry) if entry is not None else None

    @staticmethod
    def extract_latest(messages: Sequence[Message]) -> List[ResourceCitation]:
        for message in reversed(messages):
            if message.role == "assistant" and message.resources:
                return list(message.resources)
        return []

    def prime(self, key: str, messages: Sequence[Message]) -> List[ResourceCitation]:
        """Re-derive the entry for ``key`` after a full timeline hydration."""

        latest = self.extract_latest(messages)
        if latest:
            self.set(key, latest)
        return latest

    def discard(self, key: str) -> None:
        def updater(prev):
            if key not in prev.resources:
                return None
            remaining = dict(prev.resources)
            remaining.pop(key)
            return {"resources": remaining}

        self._store.update(updater)
