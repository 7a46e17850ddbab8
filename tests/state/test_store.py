from __future__ import annotations

from dify_chat.models.chat import ChatState
from dify_chat.state import ChatStore


def test_update_merges_fields_and_notifies(store):
    seen: list[str] = []
    store.subscribe(lambda state: seen.append(state.active_key))

    store.update(lambda prev: {"active_key": "c1"})

    assert store.value.active_key == "c1"
    assert seen == ["c1"]


def test_empty_update_keeps_value_and_skips_notification(store):
    seen: list[ChatState] = []
    store.subscribe(seen.append)
    before = store.value

    store.update(lambda prev: None)

    assert store.value is before
    assert seen == []


def test_unsubscribe_stops_notifications(store):
    seen: list[str] = []
    unsubscribe = store.subscribe(lambda state: seen.append(state.active_key))

    unsubscribe()
    store.update(lambda prev: {"active_key": "c2"})

    assert seen == []


def test_failing_subscriber_is_logged_and_others_still_run(logger):
    store = ChatStore(logger=logger)
    seen: list[str] = []

    def broken(_state):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(lambda state: seen.append(state.active_key))
    store.update(lambda prev: {"active_key": "c3"})

    assert seen == ["c3"]
    assert "store.subscriber.failed" in logger.names()
