"""Solara components observing the chat store."""

from . import components, hooks, pages

__all__ = ["components", "hooks", "pages"]
