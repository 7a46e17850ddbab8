# Durable mirror of selected chat state slices.

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence

from dify_chat.models.chat import ChatState, ConversationSummary, Message, ResourceCitation

from .config import STATE_SLICES
from .logging import StructuredLogger

if TYPE_CHECKING:  # pragma: no cover - typing only
    from dify_chat.state.store import ChatStore


class StateStore(ABC):
    """Abstract persistence boundary for chat state snapshots."""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Return the last saved snapshot if any."""

    @abstractmethod
    def save(self, snapshot: Dict[str, Any]) -> None:
        """Persist a snapshot."""


class FileStateStore(StateStore):
    """JSON file backed snapshot store."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        return payload if isinstance(payload, dict) else None

    def save(self, snapshot: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot), encoding="utf-8")
        tmp_path.replace(self.path)


def user_state_path(path: Path, user_id: str) -> Path:
    """Per-user snapshot file next to ``path``, e.g. ``chat_state-alice.json``."""

    slug = re.sub(r"[^A-Za-z0-9_.-]+", "_", user_id).strip("._") or "anonymous"
    return path.with_name(f"{path.stem}-{slug}{path.suffix}")


class MemoryStateStore(StateStore):
    """In-memory store handy for tests."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.snapshot = initial
        self.saves = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return self.snapshot

    def save(self, snapshot: Dict[str, Any]) -> None:
        self.snapshot = snapshot
        self.saves += 1


# ---------------------------------------------------------------------- slice codecs
def _dump_slice(state: ChatState, name: str) -> Any:
    if name == "conversations":
        return [summary.to_dict() for summary in state.conversations]
    if name == "resources":
        return {key: [item.to_dict() for item in items] for key, items in state.resources.items()}
    return {key: [message.to_dict() for message in messages] for key, messages in state.timelines.items()}


def _load_slice(name: str, payload: Any) -> Any:
    if name == "conversations":
        if not isinstance(payload or [], list):
            raise ValueError("conversations slice must be a list")
        return [ConversationSummary.from_dict(item) for item in payload or []]
    if not isinstance(payload or {}, dict):
        raise ValueError(f"{name} slice must be a mapping of conversation keys")
    decode = ResourceCitation.from_dict if name == "resources" else Message.from_dict
    restored = {}
    for key, items in (payload or {}).items():
        if not isinstance(items, list):
            raise ValueError(f"{name} entry {key!r} must be a list")
        restored[key] = [decode(item) for item in items]
    return restored


class PersistenceBridge:
    """Mirrors the configured slices of the store to a :class:`StateStore`.

    Persistence is best effort: load and save failures are logged and never
    reach the chat surface.
    """

    def __init__(
        self,
        store: "ChatStore",
        backend: StateStore,
        *,
        slices: Sequence[str] = ("conversations", "resources"),
        logger: StructuredLogger | None = None,
    ) -> None:
        unknown = [name for name in slices if name not in STATE_SLICES]
        if unknown:
            raise ValueError(f"Unknown persisted state slices: {', '.join(unknown)}")
        self._store = store
        self._backend = backend
        self._slices = tuple(slices)
        self._logger = logger or StructuredLogger("dify-chat.persistence")
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_saved: Dict[str, Any] = {}

    @property
    def slices(self) -> tuple[str, ...]:
        return self._slices

    def snapshot(self, state: ChatState) -> Dict[str, Any]:
        return {name: _dump_slice(state, name) for name in self._slices}

    def restore(self) -> bool:
        try:
            payload = self._backend.load()
        except Exception as error:  # noqa: BLE001 - persistence is best effort
            self._logger.error("persistence.load.failed", error=str(error))
            return False
        if not payload:
            return False
        try:
            restored = {
                name: _load_slice(name, payload[name]) for name in self._slices if name in payload
            }
        except (AttributeError, KeyError, TypeError, ValueError) as error:
            self._logger.error("persistence.load.invalid", error=str(error))
            return False
        if "conversations" in restored:
            restored["conversations"] = sorted(restored["conversations"], key=lambda s: s.updated_at, reverse=True)
        self._store.update(lambda prev: restored)
        self._last_saved = {name: payload[name] for name in self._slices if name in payload}
        self._logger.info("persistence.restored", slices=",".join(restored))
        return True

    def attach(self) -> None:
        if self._unsubscribe is None:
            # Only changes made after attaching are written.
            self._last_saved = self.snapshot(self._store.value)
            self._unsubscribe = self._store.subscribe(self._on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def save_now(self, state: Optional[ChatState] = None) -> None:
        self._save(self.snapshot(state or self._store.value))

    # ------------------------------------------------------------------ internals
    def _on_change(self, state: ChatState) -> None:
        snapshot = self.snapshot(state)
        if all(self._last_saved.get(name) == value for name, value in snapshot.items()):
            return
        self._save(snapshot)

    def _save(self, snapshot: Dict[str, Any]) -> None:
        try:
            self._backend.save(snapshot)
        except Exception as error:  # noqa: BLE001 - persistence is best effort
            self._logger.error("persistence.save.failed", error=str(error))
            return
        self._last_saved = dict(snapshot)
