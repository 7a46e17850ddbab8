"""Chat page composition and per-session controller wiring."""

from __future__ import annotations

import os
from typing import Optional

import solara

from dify_chat.services.api import DifyClient
from dify_chat.services.config import Settings, load_settings
from dify_chat.services.logging import StructuredLogger
from dify_chat.services.persistence import FileStateStore, PersistenceBridge, user_state_path
from dify_chat.services.usage import UsageLedger
from dify_chat.state import ChatController, ChatStore
from dify_chat.ui.components import Composer, ConversationSidebar, MessageList, ResourcePanel
from dify_chat.ui.hooks import use_chat_state

CHAT_PATH = "/chat"

_usage_singleton: UsageLedger | None = None


def resolve_user_id() -> str:
    return os.getenv("DIFY_CHAT_UID") or "anonymous"


def conversation_from_path(path: Optional[str]) -> Optional[str]:
    parts = [part for part in (path or "").split("/") if part]
    if len(parts) >= 2 and f"/{parts[0]}" == CHAT_PATH:
        return parts[1]
    return None


def create_controller(
    settings: Settings | None = None,
    *,
    user_id: str | None = None,
    usage: UsageLedger | None = None,
    logger: StructuredLogger | None = None,
) -> ChatController:
    """Build a session controller whose snapshot file belongs to ``user_id``."""

    settings = settings or load_settings()
    user_id = user_id or resolve_user_id()
    logger = logger or StructuredLogger(settings.app_name)
    logger.configure_context(app_name=settings.app_name, environment=settings.environment, user_id=user_id)
    store = ChatStore(logger=logger)
    bridge = PersistenceBridge(
        store,
        FileStateStore(user_state_path(settings.state_path, user_id)),
        slices=settings.persisted_slices,
        logger=logger,
    )
    bridge.restore()
    bridge.attach()
    logger.info("app.session.started", **settings.public_config())
    return ChatController(
        store=store,
        client=DifyClient.from_settings(settings, logger=logger),
        settings=settings,
        logger=logger,
        usage=usage,
    )


# Monthly counters span sessions; billing callbacks reach the ledger through set_plan.
def _get_usage_ledger() -> UsageLedger:
    global _usage_singleton
    if _usage_singleton is None:
        _usage_singleton = UsageLedger()
    return _usage_singleton


@solara.component
def ChatPage():
    user_id = solara.use_memo(resolve_user_id, [])
    controller = solara.use_memo(lambda: create_controller(user_id=user_id, usage=_get_usage_ledger()), [])
    router = solara.use_router()
    route_conversation = conversation_from_path(router.path)
    active_key = use_chat_state(controller.store, lambda s: s.active_key)

    def bind_session():
        controller.set_navigate(lambda conversation_id: router.push(f"{CHAT_PATH}/{conversation_id}"))
        controller.refresh_usage(user_id)
        controller.spawn(controller.load_conversations(user_id))

    solara.use_effect(bind_session, [controller])

    def sync_route():
        if route_conversation and route_conversation != active_key:
            controller.spawn(controller.open_conversation(route_conversation, user_id))

    solara.use_effect(sync_route, [route_conversation])

    def handle_select(conversation_id: str):
        router.push(f"{CHAT_PATH}/{conversation_id}")

    def handle_new_chat():
        controller.new_chat()
        router.push("/")

    with solara.Row(classes=["dc-shell"], style={"alignItems": "stretch", "gap": "1rem", "height": "100%"}):
        ConversationSidebar(controller, on_select=handle_select, on_new_chat=handle_new_chat)
        with solara.Column(classes=["dc-main"], style={"flex": "1 1 auto", "gap": "0.75rem"}):
            MessageList(controller)
            Composer(controller, user_id)
        ResourcePanel(controller)


routes = [
    solara.Route(path="/", component=ChatPage, label="home"),
    solara.Route(path="chat", component=ChatPage, label="chat"),
]
