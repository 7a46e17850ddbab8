"""Solara entry point: ``solara run dify_chat.app``."""

from __future__ import annotations

import solara

from dify_chat.ui.pages.main import ChatPage, routes

__all__ = ["Page", "routes"]


@solara.component
def Page():
    ChatPage()
