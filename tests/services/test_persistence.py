import datetime as _dt
import json

import pytest

from dify_chat.models.chat import ConversationSummary, Message, ResourceCitation
from dify_chat.services.persistence import FileStateStore, MemoryStateStore, PersistenceBridge, user_state_path
from dify_chat.state import ChatStore, MessageTimeline, ResourceCache


class BrokenStore(MemoryStateStore):
    def save(self, snapshot):
        raise OSError("disk full")


def test_bridge_saves_only_configured_slices(store, logger):
    backend = MemoryStateStore()
    bridge = PersistenceBridge(store, backend, slices=("conversations", "resources"), logger=logger)
    bridge.attach()

    ResourceCache(store, logger).set("c1", [ResourceCitation("doc", 1, "x", 1.5)])
    MessageTimeline(store, logger=logger).append("c1", Message(id="", role="user", content="hi"))

    assert set(backend.snapshot) == {"conversations", "resources"}
    assert backend.snapshot["resources"]["c1"][0]["score"] == 1.5
    assert backend.saves == 1


def test_bridge_skips_saves_when_slices_unchanged(store, logger):
    backend = MemoryStateStore()
    bridge = PersistenceBridge(store, backend, slices=("conversations",), logger=logger)
    bridge.attach()

    store.update(lambda prev: {"active_key": "elsewhere"})
    assert backend.saves == 0

    bridge.detach()
    store.update(lambda prev: {"conversations": [ConversationSummary("c1", "t")]})
    assert backend.saves == 0


def test_restore_applies_saved_slices_sorted(logger):
    old = _dt.datetime(2024, 1, 1, tzinfo=_dt.timezone.utc)
    backend = MemoryStateStore(
        {
            "conversations": [
                ConversationSummary("old", "o", old).to_dict(),
                ConversationSummary("new", "n", old + _dt.timedelta(days=2)).to_dict(),
            ],
            "timelines": {"new": [Message(id="m1", role="user", content="q", created_at=old).to_dict()]},
        }
    )
    store = ChatStore(logger=logger)
    bridge = PersistenceBridge(store, backend, slices=("conversations", "timelines"), logger=logger)

    assert bridge.restore() is True

    state = store.value
    assert [s.conversation_id for s in state.conversations] == ["new", "old"]
    assert state.messages_for("new")[0].created_at == old


def test_restore_without_snapshot_is_noop(store, logger):
    bridge = PersistenceBridge(store, MemoryStateStore(), logger=logger)
    before = store.value

    assert bridge.restore() is False
    assert store.value is before


def test_save_failure_is_logged_not_raised(store, logger):
    bridge = PersistenceBridge(store, BrokenStore(), slices=("resources",), logger=logger)
    bridge.attach()

    ResourceCache(store, logger).set("c1", [ResourceCitation("doc", 1, "x", 0.4)])

    assert store.value.resources["c1"][0].document_name == "doc"
    assert "persistence.save.failed" in logger.names()


def test_invalid_snapshot_is_logged(store, logger):
    bridge = PersistenceBridge(store, MemoryStateStore({"conversations": [{"title": "no id"}]}), logger=logger)

    assert bridge.restore() is False
    assert "persistence.load.invalid" in logger.names()


@pytest.mark.parametrize(
    "snapshot",
    [
        {"resources": ["oops"]},
        {"resources": {"c1": "oops"}},
        {"resources": {"c1": ["oops"]}},
        {"conversations": {"c1": {}}},
    ],
)
def test_wrong_shape_slice_is_logged(store, logger, snapshot):
    before = store.value
    bridge = PersistenceBridge(store, MemoryStateStore(snapshot), logger=logger)

    assert bridge.restore() is False
    assert store.value is before
    assert "persistence.load.invalid" in logger.names()


def test_unknown_slice_rejected(store, logger):
    with pytest.raises(ValueError):
        PersistenceBridge(store, MemoryStateStore(), slices=("composer",), logger=logger)


def test_file_store_round_trip(tmp_path, store, logger):
    path = tmp_path / "nested" / "state.json"
    backend = FileStateStore(path)
    bridge = PersistenceBridge(store, backend, slices=("conversations",), logger=logger)

    assert backend.load() is None
    bridge.save_now(store.value)
    store.update(lambda prev: {"conversations": [ConversationSummary("c1", "Title")]})
    bridge.save_now()

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["conversations"][0]["conversation_id"] == "c1"
    assert not path.with_suffix(".json.tmp").exists()


def test_user_state_path_keeps_users_apart(tmp_path):
    base = tmp_path / "chat_state.json"

    assert user_state_path(base, "alice") == tmp_path / "chat_state-alice.json"
    assert user_state_path(base, "bob") != user_state_path(base, "alice")
    assert user_state_path(base, "../etc/passwd").parent == tmp_path
    assert user_state_path(base, "") == tmp_path / "chat_state-anonymous.json"
