"""Bridges between the chat store and Solara's render cycle."""

from __future__ import annotations

from typing import Callable, TypeVar

import solara

from dify_chat.models.chat import ChatState
from dify_chat.state.store import ChatStore

T = TypeVar("T")


def use_chat_state(store: ChatStore, selector: Callable[[ChatState], T] | None = None):
    """Re-render the calling component whenever the selected value changes."""

    select = selector or (lambda state: state)
    value, set_value = solara.use_state(select(store.value))

    def subscribe():
        set_value(select(store.value))
        return store.subscribe(lambda state: set_value(select(state)))

    solara.use_effect(subscribe, [store])
    return value
