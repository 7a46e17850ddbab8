"""Shared fixtures for the state and service tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from dify_chat.models.api import ChatReply, ChatRequest  # noqa: E402
from dify_chat.models.chat import ChatState  # noqa: E402
from dify_chat.services.config import Settings  # noqa: E402
from dify_chat.state import ChatController, ChatStore  # noqa: E402


class StubLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def info(self, event: str, **fields):
        self.events.append((event, fields))

    debug = warning = error = info

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class FakeClient:
    """Provider double; each reply can be a ChatReply, an exception or a stream script."""

    def __init__(self) -> None:
        self.replies: list = []
        self.requests: list[ChatRequest] = []
        self.uploads: list[tuple[str, str]] = []
        self.upload_ids: list[Optional[str]] = []
        self.conversations: list = []
        self.history: dict = {}
        self.gate = None

    async def send_message(self, request: ChatRequest) -> ChatReply:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream_message(self, request: ChatRequest):
        self.requests.append(request)
        for item in self.replies.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item

    async def upload_file(self, data: bytes, file_name: str, content_type: str, user_id: str):
        self.uploads.append((file_name, user_id))
        return self.upload_ids.pop(0) if self.upload_ids else f"upload-{len(self.uploads)}"

    async def list_conversations(self, user_id: str):
        if isinstance(self.conversations, Exception):
            raise self.conversations
        return list(self.conversations)

    async def fetch_messages(self, conversation_id: str, user_id: str):
        result = self.history.get(conversation_id, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


@pytest.fixture
def logger() -> StubLogger:
    return StubLogger()


@pytest.fixture
def store(logger) -> ChatStore:
    return ChatStore(ChatState(active_key="draft-test"), logger=logger)


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", error_message="Sorry, something went wrong.")


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def navigations() -> list:
    return []


@pytest.fixture
def controller(store, client, settings, logger, navigations) -> ChatController:
    return ChatController(
        store=store,
        client=client,
        settings=settings,
        logger=logger,
        navigate=navigations.append,
    )

