"""Structured logging utilities for the chat front end."""

from __future__ import annotations

import datetime as _dt
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(slots=True)
class _LogContext:
    app_name: str
    environment: str
    user_id: str | None

    @classmethod
    def default_from_environment(cls) -> "_LogContext":
        app_name = os.getenv("DIFY_CHAT_APP_NAME", "dify-chat")
        environment = os.getenv("DIFY_CHAT_ENVIRONMENT", "local").lower()
        return cls(app_name, environment, os.getenv("DIFY_CHAT_UID"))


class _Unset:
    pass


_UNSET = _Unset()


@dataclass
class LogEvent:
    """Structured payload emitted by the application."""

    event: str
    severity: str = "info"
    component: str = "dify-chat"
    message: str | None = None
    fields: Dict[str, Any] | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
            "event": self.event,
            "severity": self.severity,
            "component": self.component,
        }
        if self.message:
            payload["message"] = self.message
        if self.fields:
            payload.update(self.fields)
        return payload


class StructuredLogger:
    """Event-name + key/value logger on top of :mod:`logging`.

    Records are rendered as a single human readable line, as JSON, or both,
    depending on ``DIFY_CHAT_LOG_FORMAT``. Each record names the emitting
    component, which is the logger name (``dify-chat.pipeline`` and so on).
    The context (application name, environment and current user) is merged
    into JSON records so that log shipping can group events per user.
    """

    def __init__(self, name: str = "dify-chat") -> None:
        self._name = name
        self._logger = logging.getLogger(name)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)
        self._logger.setLevel(logging.DEBUG if os.getenv("DIFY_CHAT_DEBUG") == "1" else logging.INFO)
        self._console_enabled = os.getenv("DIFY_CHAT_DISABLE_CONSOLE_LOGS", "0") != "1"
        self._console_format = os.getenv("DIFY_CHAT_LOG_FORMAT", "human").lower()
        self._context = _LogContext.default_from_environment()

    def log(self, event: str, *, severity: str = "info", message: str | None = None, **fields: Any) -> None:
        payload = LogEvent(event=event, severity=severity, component=self._name, message=message, fields=fields)
        self._emit(payload)

    def debug(self, event: str, **fields: Any) -> None:
        self.log(event, severity="debug", **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(event, severity="info", **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(event, severity="warning", **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log(event, severity="error", **fields)

    # ------------------------------------------------------------------ context configuration
    def configure_context(
        self,
        *,
        app_name: str | None = None,
        environment: str | None = None,
        user_id: str | None | _Unset = _UNSET,
    ) -> None:
        if app_name is not None:
            self._context.app_name = app_name
        if environment is not None:
            self._context.environment = environment.lower()
        if user_id is not _UNSET:
            self._context.user_id = user_id

    # ------------------------------------------------------------------ internals
    def _emit(self, event: LogEvent) -> None:
        if not self._console_enabled:
            return
        record = event.to_dict()
        fmt = self._console_format
        level = self._severity_to_level(record.get("severity", "info"))
        if fmt in {"json", "both"}:
            body = {
                "app_name": self._context.app_name,
                "environment": self._context.environment,
                "user_id": self._context.user_id,
                **record,
            }
            self._logger.log(level, json.dumps(body, default=str))
        if fmt in {"human", "both"}:
            self._logger.log(level, self._format_human(record))

    @staticmethod
    def _severity_to_level(severity: str) -> int:
        mapping = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        return mapping.get(severity.lower(), logging.INFO)

    def _format_human(self, record: Dict[str, Any]) -> str:
        data = dict(record)
        timestamp = data.pop("timestamp", "-")
        event = data.pop("event", "unknown")
        severity = data.pop("severity", "info").upper()
        component = data.pop("component", "")
        message = data.pop("message", None)
        fields = " ".join(
            f"{key}={self._format_field_value(value)}" for key, value in sorted(data.items())
        )
        parts = [f"[{timestamp}]", severity, event]
        if component:
            parts.append(f"({component})")
        if message:
            parts.append(f"- {message}")
        if fields:
            parts.append(f"- {fields}")
        return " ".join(part for part in parts if part)

    @staticmethod
    def _format_field_value(value: Any) -> str:
        if isinstance(value, bool):
            return str(value).lower()
        return str(value)
