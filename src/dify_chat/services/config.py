"""Configuration loading for the chat front end."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

try:  # pragma: no cover - Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[import]


ENV_PREFIX = "DIFY_CHAT_"
CONFIG_PATH_ENV_VAR = "DIFY_CHAT_CONFIG_PATH"
SECRET_SCHEME = "secret://"
RESPONSE_MODES = ("blocking", "streaming")
STATE_SLICES = ("conversations", "resources", "timelines")
DEFAULT_ERROR_MESSAGE = "Sorry, something went wrong while sending your message. Please try again."

_logger = logging.getLogger("dify-chat.config")


def _normalise_key(value: str) -> str:
    return value.strip().upper().replace("-", "_")


def _json_or_raw(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


@dataclass(slots=True)
class Settings:
    """Runtime settings, file values overridden by ``DIFY_CHAT_*`` variables."""

    api_base_url: str = "https://api.dify.ai/v1"
    api_key: str = ""
    response_mode: str = "blocking"
    request_timeout: float = 60.0
    title_max_length: int = 30
    error_message: str = DEFAULT_ERROR_MESSAGE
    persisted_slices: Tuple[str, ...] = ("conversations", "resources")
    state_path: Path = Path("storage/chat_state.json")
    conversation_page_size: int = 50
    history_page_size: int = 100
    max_files: int = 5
    max_file_size_mb: int = 10
    app_name: str = "dify-chat"
    environment: str = "local"
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.response_mode not in RESPONSE_MODES:
            raise ValueError(f"Unknown response mode: {self.response_mode!r}")
        unknown = [name for name in self.persisted_slices if name not in STATE_SLICES]
        if unknown:
            raise ValueError(f"Unknown persisted state slices: {', '.join(unknown)}")

    @property
    def streaming(self) -> bool:
        return self.response_mode == "streaming"

    def public_config(self) -> Dict[str, Any]:
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "api_base_url": self.api_base_url,
            "response_mode": self.response_mode,
            "persisted_slices": list(self.persisted_slices),
        }


def resolve_config_path(root: Path | None = None, environ: Mapping[str, str] | None = None) -> Path | None:
    environment = os.environ if environ is None else environ
    env_path = environment.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    base = root or Path.cwd()
    for candidate in (base / "config" / "dify_chat.toml", base / "dify_chat.toml"):
        if candidate.exists():
            return candidate
    return None


def _parse_file(path: Path) -> Dict[str, Any]:
    raw_text = path.read_text(encoding="utf-8")
    if not raw_text.strip():
        return {}
    try:
        data = tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError:
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError as error:
            raise ValueError(f"Invalid configuration file: {path}") from error
    # A [dify_chat] table is accepted as well as top-level keys.
    section = data.get("dify_chat")
    if isinstance(section, Mapping):
        data = dict(section)
    return {_normalise_key(key): value for key, value in data.items()}


def _resolve_secret(value: Any, environment: Mapping[str, str]) -> Any:
    if isinstance(value, str) and value.lower().startswith(SECRET_SCHEME):
        reference = _normalise_key(value[len(SECRET_SCHEME):])
        resolved = environment.get(f"{ENV_PREFIX}SECRET_{reference}")
        if resolved is None:
            _logger.debug("config.secret.missing", extra={"reference": reference})
        return resolved
    return value


def _coerce(name: str, value: Any) -> Any:
    if name in {"request_timeout"}:
        return float(value)
    if name in {"title_max_length", "conversation_page_size", "history_page_size", "max_files", "max_file_size_mb"}:
        return int(value)
    if name == "persisted_slices":
        if isinstance(value, str):
            parsed = _json_or_raw(value)
            value = parsed if isinstance(parsed, list) else [item.strip() for item in value.split(",") if item.strip()]
        return tuple(str(item) for item in value)
    if name == "state_path":
        return Path(value)
    if name in {"api_key", "api_base_url", "response_mode", "error_message", "app_name", "environment"}:
        return str(value)
    return value


def load_settings(
    path: Path | str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    root: Path | None = None,
) -> Settings:
    """Build :class:`Settings` from an optional TOML file and the environment."""

    environment = os.environ if environ is None else environ
    config_path = Path(path) if path is not None else resolve_config_path(root, environment)
    file_values: Dict[str, Any] = {}
    if config_path is not None and config_path.exists():
        file_values = _parse_file(config_path)
    elif config_path is not None:
        _logger.debug("config.missing", extra={"path": str(config_path)})

    known = {item.name for item in fields(Settings)} - {"extra"}
    values: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in file_values.items():
        name = key.lower()
        if name in known:
            values[name] = value
        else:
            extra[name] = value
    for name in known:
        env_key = f"{ENV_PREFIX}{name.upper()}"
        if env_key in environment:
            values[name] = _json_or_raw(environment[env_key])

    resolved = {name: _coerce(name, _resolve_secret(value, environment)) for name, value in values.items()}
    resolved = {name: value for name, value in resolved.items() if value is not None}
    state_path = resolved.get("state_path")
    if isinstance(state_path, Path) and not state_path.is_absolute() and config_path is not None:
        resolved["state_path"] = (config_path.parent / state_path).resolve()
    return Settings(**resolved, extra=extra)
