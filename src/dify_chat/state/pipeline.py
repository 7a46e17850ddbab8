"""Send pipeline: optimistic append, provider round trip, write-back."""

from __future__ import annotations

import asyncio
import enum
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set

from dify_chat.models.api import ChatReply, ChatRequest, RemoteFile, ReplyDelta
from dify_chat.models.chat import (
    ChatState,
    ComposerState,
    ConversationSummary,
    Message,
    ServerAttachment,
    StagedFile,
    derive_title,
    utcnow,
)
from dify_chat.services.api import DifyClient
from dify_chat.services.config import Settings
from dify_chat.services.logging import StructuredLogger
from dify_chat.services.usage import UsageLedger

from .attachments import AttachmentRegistrar, classify_file_type
from .registry import ConversationRegistry, upserted
from .store import ChatStore
from .timeline import MessageTimeline

DEFAULT_TITLE = "New chat"

Navigate = Callable[[str], None]


class SendOutcome(enum.Enum):
    REJECTED = "rejected"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(slots=True)
class _Submission:
    key: str
    conversation_id: Optional[str]
    user_message_id: str
    assistant_id: Optional[str] = None
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


def conversation_title(text: str, files: Sequence[StagedFile], limit: int = 30) -> str:
    title = derive_title(text, limit)
    if title:
        return title
    if files:
        return derive_title(files[0].name, limit)
    return DEFAULT_TITLE


class SendPipeline:
    """Runs one submission from the composer through to the timeline.

    All writes use the conversation key captured when the submission starts,
    so a reply that arrives after the user switched conversations lands where
    it was sent from. Submissions are not serialized: two in flight for the
    same conversation append their replies in completion order.
    """

    def __init__(
        self,
        store: ChatStore,
        *,
        timeline: MessageTimeline,
        registry: ConversationRegistry,
        registrar: AttachmentRegistrar,
        client: DifyClient,
        settings: Settings,
        logger: StructuredLogger | None = None,
        usage: UsageLedger | None = None,
        navigate: Navigate | None = None,
    ) -> None:
        self._store = store
        self._timeline = timeline
        self._registry = registry
        self._registrar = registrar
        self._client = client
        self._settings = settings
        self._logger = logger or StructuredLogger("dify-chat.pipeline")
        self._usage = usage
        self.navigate = navigate
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ entry points
    def send(self, user_id: str):
        """Start a submission from a synchronous UI handler."""

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.submit(user_id))
        task = loop.create_task(self.submit(user_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def submit(
        self,
        user_id: str,
        *,
        text: Optional[str] = None,
        files: Optional[Sequence[StagedFile]] = None,
    ) -> SendOutcome:
        state = self._store.value
        text = (state.composer.text if text is None else text).strip()
        files = list(state.composer.staged_files if files is None else files)
        if not text and not files:
            self._logger.debug("chat.send.rejected", reason="empty")
            return SendOutcome.REJECTED
        if not self._usage_allows(user_id, has_files=bool(files)):
            return SendOutcome.REJECTED

        key = state.active_key
        conversation_id = state.active_conversation_id
        attachments = self._registrar.stage_local_files(files)
        user_message_id = self._timeline.append(key, Message(id="", role="user", content=text, attachments=attachments))
        submission = _Submission(key=key, conversation_id=conversation_id, user_message_id=user_message_id)
        self._store.update(
            lambda prev: {"composer": ComposerState(), "in_flight": {**prev.in_flight, submission.token: key}}
        )
        self._logger.info(
            "chat.send.started",
            key=key,
            conversation_id=conversation_id,
            attachments=len(attachments),
            mode=self._settings.response_mode,
        )

        try:
            upload_refs = await self._upload_all(files, user_id)
            request = ChatRequest(
                text=text,
                user_id=user_id,
                conversation_id=conversation_id,
                attachments=[
                    RemoteFile(category=classify_file_type(file.content_type), upload_ref=ref)
                    for file, ref in zip(files, upload_refs)
                    if ref
                ],
            )
            if self._settings.streaming:
                reply = await self._stream_reply(submission, request)
            else:
                reply = await self._client.send_message(request)
            title = conversation_title(text, files, self._settings.title_max_length)
            became_active = self._write_back(submission, reply, upload_refs, title=title)
        except Exception as error:  # noqa: BLE001
            self._logger.error("chat.send.failed", key=submission.key, conversation_id=conversation_id, error=str(error))
            self._write_failure(submission)
            return SendOutcome.FAILURE
        finally:
            self._release(submission.token)

        self._record_usage(user_id, reply, upload_refs)
        if became_active and self.navigate is not None:
            self._navigate(submission.key)
        self._logger.info("chat.send.succeeded", key=submission.key, resources=len(reply.resource_citations))
        return SendOutcome.SUCCESS

    # ------------------------------------------------------------------ remote calls
    async def _upload_all(self, files: Sequence[StagedFile], user_id: str) -> List[Optional[str]]:
        refs: List[Optional[str]] = []
        for file in files:
            refs.append(await self._client.upload_file(file.data, file.name, file.content_type, user_id))
        if files:
            self._logger.info("chat.upload.complete", files=len(files), confirmed=sum(1 for ref in refs if ref))
        return refs

    async def _stream_reply(self, submission: _Submission, request: ChatRequest) -> ChatReply:
        reply: Optional[ChatReply] = None
        async for event in self._client.stream_message(request):
            if isinstance(event, ReplyDelta):
                if submission.assistant_id is None:
                    placeholder = Message(id=event.message_id or "", role="assistant", content=event.answer_text)
                    submission.assistant_id = self._timeline.append(submission.key, placeholder)
                else:
                    self._timeline.update_content(submission.key, submission.assistant_id, event.answer_text)
            else:
                reply = event
        if reply is None:
            raise ValueError("Streaming reply ended without a result")
        return reply

    # ------------------------------------------------------------------ write-back
    def _write_back(
        self,
        submission: _Submission,
        reply: ChatReply,
        upload_refs: Sequence[Optional[str]],
        *,
        title: str,
    ) -> bool:
        key = submission.key
        records = reply.confirmed_attachments or [ServerAttachment(persistent_id=ref) for ref in upload_refs]
        if upload_refs and any(record.persistent_id or record.url for record in records):
            self._timeline.reconcile_attachments(key, submission.user_message_id, records)

        if submission.assistant_id is None:
            submission.assistant_id = self._timeline.append(
                key,
                Message(
                    id=reply.message_id or "",
                    role="assistant",
                    content=reply.answer_text,
                    resources=list(reply.resource_citations),
                ),
            )
        else:
            self._timeline.update_content(
                key, submission.assistant_id, reply.answer_text, resources=reply.resource_citations
            )

        if submission.conversation_id is None and reply.conversation_id:
            return self._adopt(submission, reply.conversation_id, title)
        if submission.conversation_id is not None:
            self._registry.touch(submission.conversation_id)
        return False

    def _adopt(self, submission: _Submission, conversation_id: str, title: str) -> bool:
        """Move the draft's state under the provider id and register it."""

        draft_key = submission.key
        summary = ConversationSummary(conversation_id=conversation_id, title=title, updated_at=utcnow())
        became_active = False

        def updater(prev: ChatState):
            nonlocal became_active
            timelines = dict(prev.timelines)
            timelines[conversation_id] = [*timelines.get(conversation_id, []), *timelines.pop(draft_key, [])]
            resources = dict(prev.resources)
            if draft_key in resources:
                resources[conversation_id] = resources.pop(draft_key)
            changes = {
                "timelines": timelines,
                "resources": resources,
                "conversations": upserted(prev.conversations, summary),
                "in_flight": {**prev.in_flight, submission.token: conversation_id},
            }
            if prev.active_key == draft_key:
                became_active = True
                changes["active_key"] = conversation_id
                changes["active_conversation_id"] = conversation_id
            return changes

        self._store.update(updater)
        submission.key = conversation_id
        self._logger.info(
            "chat.conversation.created",
            conversation_id=conversation_id,
            draft_key=draft_key,
            active=became_active,
        )
        return became_active

    def _write_failure(self, submission: _Submission) -> None:
        apology = self._settings.error_message
        if submission.assistant_id is not None and self._timeline.update_content(
            submission.key, submission.assistant_id, apology, resources=[]
        ):
            return
        self._timeline.append(submission.key, Message(id="", role="assistant", content=apology))

    def _release(self, token: str) -> None:
        def updater(prev: ChatState):
            if token not in prev.in_flight:
                return None
            in_flight = dict(prev.in_flight)
            del in_flight[token]
            return {"in_flight": in_flight}

        self._store.update(updater)

    # ------------------------------------------------------------------ usage + navigation
    def _usage_allows(self, user_id: str, *, has_files: bool) -> bool:
        if self._usage is None:
            return True
        status = self._usage.check(user_id)
        if status.can_use and not (has_files and status.upload_disabled):
            return True
        self._store.update(lambda prev: {"usage": status})
        self._logger.info("chat.send.rejected", reason="usage", detail=status.reason)
        return False

    def _record_usage(self, user_id: str, reply: ChatReply, upload_refs: Sequence[Optional[str]]) -> None:
        if self._usage is None:
            return
        try:
            self._usage.record_chat(user_id, reply.tokens_used)
            self._usage.record_uploads(user_id, sum(1 for ref in upload_refs if ref))
            status = self._usage.check(user_id)
        except Exception as error:  # noqa: BLE001
            self._logger.error("usage.record.failed", error=str(error))
            return
        self._store.update(lambda prev: {"usage": status})

    def _navigate(self, conversation_id: str) -> None:
        try:
            self.navigate(conversation_id)
        except Exception as error:  # noqa: BLE001
            self._logger.error("chat.navigate.failed", conversation_id=conversation_id, error=str(error))
