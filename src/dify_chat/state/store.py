"""Observable container owning the chat state."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from threading import RLock
from typing import Any, Dict, List, Optional

from dify_chat.models.chat import ChatState
from dify_chat.services.logging import StructuredLogger

Updater = Callable[[ChatState], Optional[Dict[str, Any]]]
Listener = Callable[[ChatState], None]


class ChatStore:
    """Single writer-facing state container, passed explicitly to components.

    ``update`` takes a function of the previous state returning the fields to
    replace, mirroring ``solara.Reactive.update``. Each update produces a new
    :class:`ChatState` and notifies subscribers synchronously; updaters must
    not suspend.
    """

    def __init__(self, initial: ChatState | None = None, *, logger: StructuredLogger | None = None) -> None:
        self._value = initial or ChatState()
        self._logger = logger or StructuredLogger("dify-chat.store")
        self._subscribers: List[Listener] = []
        self._lock = RLock()

    @property
    def value(self) -> ChatState:
        return self._value

    def update(self, updater: Updater) -> ChatState:
        with self._lock:
            changes = updater(self._value)
            if not changes:
                return self._value
            self._value = dataclasses.replace(self._value, **changes)
            value = self._value
            listeners = list(self._subscribers)
        self._notify(listeners, value)
        return value

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._subscribers:
                    self._subscribers.remove(listener)

        return unsubscribe

    def _notify(self, listeners: List[Listener], value: ChatState) -> None:
        for listener in listeners:
            try:
                listener(value)
            except Exception as error:  # noqa: BLE001 - one observer must not break the others
                self._logger.error("store.subscriber.failed", listener=getattr(listener, "__qualname__", repr(listener)), error=str(error))
