"""HTTP client for the hosted conversational-AI provider (Dify chat-app API)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from urllib.parse import urlparse

import httpx

from dify_chat.models.api import ChatReply, ChatRequest, ReplyDelta
from dify_chat.models.chat import (
    Attachment,
    ConversationSummary,
    Message,
    ResourceCitation,
    ServerAttachment,
    derive_title,
    parse_timestamp,
    utcnow,
)

from .config import Settings
from .logging import StructuredLogger
from .telemetry import telemetry_span

StreamEvent = Union[ReplyDelta, ChatReply]


class ChatApiError(RuntimeError):
    """Raised for transport failures, non-2xx statuses and malformed payloads."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ApiResponse:
    status_code: int
    payload: Dict[str, Any]

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ApiResponse":
        try:
            data = response.json()
        except json.JSONDecodeError as error:
            raise ChatApiError("Malformed JSON payload", status_code=response.status_code) from error
        if not isinstance(data, dict):
            raise ChatApiError("Unexpected payload shape", status_code=response.status_code)
        return cls(status_code=response.status_code, payload=data)


# ---------------------------------------------------------------------- payload reshaping
def parse_resources(items: Any) -> List[ResourceCitation]:
    citations: List[ResourceCitation] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        try:
            citations.append(ResourceCitation.from_dict(item))
        except (TypeError, ValueError) as error:
            raise ChatApiError(f"Malformed retriever resource: {error}") from error
    return citations


def parse_server_files(items: Any) -> List[ServerAttachment]:
    records: List[ServerAttachment] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        records.append(
            ServerAttachment(
                persistent_id=item.get("id") or item.get("file_id") or item.get("upload_file_id"),
                url=item.get("url") or item.get("file_url"),
            )
        )
    return records


def _tokens_used(metadata: Dict[str, Any]) -> int:
    usage = metadata.get("usage") or {}
    try:
        return int(usage.get("total_tokens") or 0)
    except (TypeError, ValueError):
        return 0


def parse_chat_reply(payload: Dict[str, Any]) -> ChatReply:
    answer = payload.get("answer")
    if not isinstance(answer, str):
        raise ChatApiError("Reply payload has no answer text")
    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ChatApiError("Reply metadata is not an object")
    return ChatReply(
        answer_text=answer,
        conversation_id=payload.get("conversation_id") or None,
        message_id=payload.get("message_id") or payload.get("id"),
        resource_citations=parse_resources(metadata.get("retriever_resources")),
        confirmed_attachments=parse_server_files(payload.get("files")),
        tokens_used=_tokens_used(metadata),
    )


def parse_conversations(payload: Dict[str, Any], *, title_limit: int = 30) -> List[ConversationSummary]:
    summaries: List[ConversationSummary] = []
    for item in payload.get("data") or []:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        summaries.append(
            ConversationSummary(
                conversation_id=str(item["id"]),
                title=derive_title(str(item.get("name") or ""), title_limit),
                updated_at=parse_timestamp(item.get("updated_at") or item.get("created_at")) or utcnow(),
            )
        )
    return summaries


def _file_name_from_url(url: Optional[str]) -> str:
    if not url:
        return ""
    return PurePosixPath(urlparse(url).path).name


def parse_history(payload: Dict[str, Any]) -> List[Message]:
    """Turn provider query/answer records into an ordered message list."""

    records = [item for item in payload.get("data") or [] if isinstance(item, dict) and item.get("id")]
    records.sort(key=lambda item: item.get("created_at") or 0)
    messages: List[Message] = []
    for record in records:
        created_at = parse_timestamp(record.get("created_at"))
        attachments = [
            Attachment(
                local_id=str(item.get("id")),
                file_name=str(item.get("filename") or _file_name_from_url(item.get("url"))),
                file_size=int(item.get("size") or 0),
                file_type=str(item.get("mime_type") or ""),
                persistent_id=item.get("id"),
                url=item.get("url"),
            )
            for item in record.get("message_files") or []
            if isinstance(item, dict) and item.get("belongs_to", "user") == "user"
        ]
        messages.append(
            Message(
                id=f"{record['id']}:query",
                role="user",
                content=str(record.get("query") or ""),
                attachments=attachments,
                created_at=created_at,
            )
        )
        messages.append(
            Message(
                id=str(record["id"]),
                role="assistant",
                content=str(record.get("answer") or ""),
                resources=parse_resources(record.get("retriever_resources")),
                created_at=created_at,
            )
        )
    return messages


def _parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data:
        return None
    try:
        event = json.loads(data)
    except json.JSONDecodeError as error:
        raise ChatApiError("Malformed streaming event") from error
    return event if isinstance(event, dict) else None


# ---------------------------------------------------------------------- client
class DifyClient:
    """Async wrapper around httpx for the provider's chat-app endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 60.0,
        title_limit: int = 30,
        conversation_page_size: int = 50,
        history_page_size: int = 100,
        logger: StructuredLogger | None = None,
        session: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._title_limit = title_limit
        self._conversation_page_size = conversation_page_size
        self._history_page_size = history_page_size
        self._logger = logger or StructuredLogger("dify-chat.api")
        self._session = session or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        logger: StructuredLogger | None = None,
        session: Optional[httpx.AsyncClient] = None,
    ) -> "DifyClient":
        return cls(
            settings.api_base_url,
            settings.api_key,
            timeout=settings.request_timeout,
            title_limit=settings.title_max_length,
            conversation_page_size=settings.conversation_page_size,
            history_page_size=settings.history_page_size,
            logger=logger,
            session=session,
        )

    # ------------------------------------------------------------------ chat
    async def send_message(self, request: ChatRequest) -> ChatReply:
        with telemetry_span(self._logger, "api.chat", conversation_id=request.conversation_id):
            response = await self._request("POST", "chat-messages", json=self._chat_body(request, "blocking"))
            reply = parse_chat_reply(response.payload)
        self._logger.info(
            "api.chat.reply",
            conversation_id=reply.conversation_id,
            resources=len(reply.resource_citations),
            tokens=reply.tokens_used,
        )
        return reply

    async def stream_message(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Yield cumulative :class:`ReplyDelta` items, then the final :class:`ChatReply`."""

        body = self._chat_body(request, "streaming")
        answer = ""
        conversation_id = request.conversation_id
        message_id: Optional[str] = None
        end_event: Optional[Dict[str, Any]] = None
        try:
            async with self._session.stream("POST", self._url("chat-messages"), json=body, headers=self._headers) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ChatApiError(self._error_message(response), status_code=response.status_code)
                async for line in response.aiter_lines():
                    event = _parse_sse_line(line)
                    if event is None:
                        continue
                    kind = event.get("event")
                    conversation_id = event.get("conversation_id") or conversation_id
                    message_id = event.get("message_id") or message_id
                    if kind in {"message", "agent_message"}:
                        answer += str(event.get("answer") or "")
                        yield ReplyDelta(answer_text=answer, conversation_id=conversation_id, message_id=message_id)
                    elif kind == "message_replace":
                        answer = str(event.get("answer") or "")
                        yield ReplyDelta(answer_text=answer, conversation_id=conversation_id, message_id=message_id)
                    elif kind == "message_end":
                        end_event = event
                    elif kind == "error":
                        raise ChatApiError(
                            str(event.get("message") or "Streaming reply failed"),
                            status_code=event.get("status"),
                        )
        except httpx.HTTPError as error:
            raise ChatApiError(str(error)) from error
        if end_event is None:
            raise ChatApiError("Stream closed before the reply completed")
        metadata = end_event.get("metadata") or {}
        yield ChatReply(
            answer_text=answer,
            conversation_id=conversation_id,
            message_id=message_id,
            resource_citations=parse_resources(metadata.get("retriever_resources")),
            confirmed_attachments=parse_server_files(end_event.get("files")),
            tokens_used=_tokens_used(metadata),
        )

    # ------------------------------------------------------------------ files
    async def upload_file(self, data: bytes, file_name: str, content_type: str, user_id: str) -> Optional[str]:
        """Upload a raw file; ``None`` means the provider did not confirm it."""

        try:
            with telemetry_span(self._logger, "api.upload", file_name=file_name):
                response = await self._request(
                    "POST",
                    "files/upload",
                    files={"file": (file_name, data, content_type or "application/octet-stream")},
                    data={"user": user_id},
                )
        except ChatApiError as error:
            self._logger.warning("api.upload.failed", file_name=file_name, error=str(error))
            return None
        persistent_id = response.payload.get("id")
        if not persistent_id:
            self._logger.warning("api.upload.unconfirmed", file_name=file_name)
            return None
        return str(persistent_id)

    # ------------------------------------------------------------------ listings
    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        response = await self._request(
            "GET",
            "conversations",
            params={"user": user_id, "limit": self._conversation_page_size},
        )
        return parse_conversations(response.payload, title_limit=self._title_limit)

    async def fetch_messages(self, conversation_id: str, user_id: str) -> List[Message]:
        response = await self._request(
            "GET",
            "messages",
            params={"conversation_id": conversation_id, "user": user_id, "limit": self._history_page_size},
        )
        return parse_history(response.payload)

    async def aclose(self) -> None:
        await self._session.aclose()

    # ------------------------------------------------------------------ internals
    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    @staticmethod
    def _chat_body(request: ChatRequest, response_mode: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "query": request.text,
            "user": request.user_id,
            "inputs": {},
            "response_mode": response_mode,
        }
        if request.conversation_id:
            body["conversation_id"] = request.conversation_id
        if request.attachments:
            body["files"] = [attachment.to_payload() for attachment in request.attachments]
        return body

    async def _request(self, method: str, path: str, **kwargs: Any) -> ApiResponse:
        try:
            response = await self._session.request(method, self._url(path), headers=self._headers, **kwargs)
        except httpx.HTTPError as error:
            self._logger.error("api.request.transport_error", path=path, error=str(error))
            raise ChatApiError(str(error)) from error
        if response.status_code >= 400:
            message = self._error_message(response)
            self._logger.error("api.request.failed", path=path, status=response.status_code, error=message)
            raise ChatApiError(message, status_code=response.status_code)
        return ApiResponse.from_response(response)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return response.text or f"HTTP {response.status_code}"
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return f"HTTP {response.status_code}"
