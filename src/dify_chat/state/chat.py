"""Chat controller orchestrating conversations, composer and sending."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import List, Optional, Sequence

from dify_chat.models.chat import ChatState, ComposerState, StagedFile, is_draft_key, new_draft_key
from dify_chat.services.api import ChatApiError, DifyClient
from dify_chat.services.config import Settings
from dify_chat.services.logging import StructuredLogger
from dify_chat.services.usage import UsageLedger

from .attachments import AttachmentRegistrar
from .pipeline import Navigate, SendOutcome, SendPipeline
from .registry import ConversationRegistry
from .resources import ResourceCache
from .store import ChatStore
from .timeline import MessageTimeline


class ChatController:
    """High-level orchestrator for chat interactions."""

    def __init__(
        self,
        *,
        store: ChatStore,
        client: DifyClient,
        settings: Settings,
        logger: StructuredLogger | None = None,
        usage: UsageLedger | None = None,
        navigate: Navigate | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self._client = client
        self._logger = logger or StructuredLogger("dify-chat.controller")
        self._usage = usage
        self.registrar = AttachmentRegistrar(self._logger)
        self.resources = ResourceCache(store, self._logger)
        self.registry = ConversationRegistry(store, self._logger)
        self.timeline = MessageTimeline(store, registrar=self.registrar, logger=self._logger)
        self.pipeline = SendPipeline(
            store,
            timeline=self.timeline,
            registry=self.registry,
            registrar=self.registrar,
            client=client,
            settings=settings,
            logger=self._logger,
            usage=usage,
            navigate=navigate,
        )

    @property
    def state(self) -> ChatState:
        return self.store.value

    def set_navigate(self, navigate: Navigate | None) -> None:
        self.pipeline.navigate = navigate

    def spawn(self, coroutine):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coroutine)
        return loop.create_task(coroutine)

    # ------------------------------------------------------------------ Conversations
    async def load_conversations(self, user_id: str) -> None:
        try:
            summaries = await self._client.list_conversations(user_id)
        except ChatApiError as error:
            self._logger.error("chat.conversations.failed", error=str(error), status=error.status_code)
            return
        self.registry.set_all(summaries)

    async def open_conversation(self, conversation_id: str, user_id: str) -> None:
        """Activate a provider conversation and hydrate it from history."""

        self.select_conversation(conversation_id)
        try:
            messages = await self._client.fetch_messages(conversation_id, user_id)
        except ChatApiError as error:
            self._logger.error(
                "chat.history.failed",
                conversation_id=conversation_id,
                error=str(error),
                status=error.status_code,
            )
            if not self.state.messages_for(conversation_id):
                self.timeline.clear(conversation_id)
            return
        # The user may have moved on; the history still lands under its own key.
        self.timeline.replace_all(conversation_id, messages)
        self.resources.prime(conversation_id, messages)
        self._logger.info("chat.history.loaded", conversation_id=conversation_id, messages=len(messages))

    def select_conversation(self, conversation_id: str) -> None:
        self.store.update(
            lambda prev: {"active_key": conversation_id, "active_conversation_id": conversation_id}
        )

    def new_chat(self) -> str:
        draft_key = new_draft_key()

        def updater(prev: ChatState):
            resources = dict(prev.resources)
            timelines = dict(prev.timelines)
            if is_draft_key(prev.active_key) and not prev.is_sending(prev.active_key):
                resources.pop(prev.active_key, None)
                timelines.pop(prev.active_key, None)
            return {
                "active_key": draft_key,
                "active_conversation_id": None,
                "composer": ComposerState(),
                "resources": resources,
                "timelines": timelines,
            }

        self.store.update(updater)
        self._logger.info("chat.new", key=draft_key)
        return draft_key

    # ------------------------------------------------------------------ Composer
    def set_input(self, text: str) -> None:
        self.store.update(lambda prev: {"composer": dataclasses.replace(prev.composer, text=text)})

    def stage_files(self, files: Sequence[StagedFile], user_id: Optional[str] = None) -> List[str]:
        """Add picked files to the composer; returns the rejection reasons.

        With a usage ledger and a user, the size cap is the smaller of the
        configured limit and the user's plan limit.
        """

        usage = self.state.usage
        if usage is not None and usage.upload_disabled:
            return [usage.reason or "File uploads are disabled for this month."]
        max_file_size_mb = self.settings.max_file_size_mb
        if self._usage is not None and user_id is not None:
            max_file_size_mb = min(max_file_size_mb, self._usage.plan_for(user_id).max_upload_size_mb)
        accepted, rejected = self.registrar.validate_files(
            files,
            max_files=self.settings.max_files,
            max_file_size_mb=max_file_size_mb,
            already_staged=len(self.state.composer.staged_files),
        )
        if accepted:
            self.store.update(
                lambda prev: {
                    "composer": dataclasses.replace(
                        prev.composer, staged_files=[*prev.composer.staged_files, *accepted]
                    )
                }
            )
        return rejected

    def remove_staged_file(self, index: int) -> None:
        def updater(prev: ChatState):
            staged = list(prev.composer.staged_files)
            if not 0 <= index < len(staged):
                return None
            staged.pop(index)
            return {"composer": dataclasses.replace(prev.composer, staged_files=staged)}

        self.store.update(updater)

    # ------------------------------------------------------------------ Messaging
    async def submit(
        self,
        user_id: str,
        *,
        text: Optional[str] = None,
        files: Optional[Sequence[StagedFile]] = None,
    ) -> SendOutcome:
        return await self.pipeline.submit(user_id, text=text, files=files)

    def send(self, user_id: str):
        return self.pipeline.send(user_id)

    def refresh_usage(self, user_id: str) -> None:
        if self._usage is None:
            return
        status = self._usage.check(user_id)
        self.store.update(lambda prev: {"usage": status})
