"""Runtime configuration loaded from a YAML (or JSON) file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigFailure

TARGET_TYPES = ("groups", "users")
DEFAULT_USER_AGENT = "User-Agent Mozilla/5.0"


@dataclass(slots=True)
class Target:
    """The user or group whose books are backed up."""

    type: str
    login: str

    def uri_path(self) -> str:
        return f"/{self.type}/{self.login}"


@dataclass(slots=True)
class Config:
    """Runtime configuration for one backup run."""

    host: str
    token: str
    target: Target
    limit: int
    chunk_size: int = 8
    page_size: int = 100
    timeout_sec: float = 30
    user_agent: str = DEFAULT_USER_AGENT
    mirror_resources: bool = True

    def __repr__(self) -> str:
        return (
            f"Config(host={self.host!r}, token='*****', target={self.target!r}, "
            f"limit={self.limit}, chunk_size={self.chunk_size}, page_size={self.page_size}, "
            f"timeout_sec={self.timeout_sec}, mirror_resources={self.mirror_resources})"
        )


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if key not in data:
        raise ConfigFailure(f"missing config key: {key}")
    value = data[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and kind is not bool:
        raise ConfigFailure(f"config key {key} has wrong type: {type(value).__name__}")
    if not isinstance(value, kind):
        raise ConfigFailure(f"config key {key} has wrong type: {type(value).__name__}")
    return value


def _optional(data: dict[str, Any], key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    if key not in data or data[key] is None:
        return default
    return _require(data, key, kind)


def parse_config(data: Any) -> Config:
    """Build a Config from already-decoded data, validating every key."""
    if not isinstance(data, dict):
        raise ConfigFailure("config must be a mapping")

    host = _require(data, "host", str).rstrip("/")
    if not host.startswith(("http://", "https://")):
        raise ConfigFailure(f"host must be an http(s) URL: {host}")

    target_data = _require(data, "target", dict)
    target_type = _require(target_data, "type", str)
    if target_type not in TARGET_TYPES:
        raise ConfigFailure(f"target.type must be one of {', '.join(TARGET_TYPES)}: {target_type}")
    target = Target(type=target_type, login=_require(target_data, "login", str))

    limit = _require(data, "limit", int)
    if limit < 0:
        raise ConfigFailure("limit must not be negative")
    chunk_size = _optional(data, "chunk_size", int, 8)
    page_size = _optional(data, "page_size", int, 100)
    if chunk_size < 1 or page_size < 1:
        raise ConfigFailure("chunk_size and page_size must be positive")
    timeout_sec = float(_optional(data, "timeout_sec", (int, float), 30))
    if timeout_sec <= 0:
        raise ConfigFailure("timeout_sec must be positive")

    return Config(
        host=host,
        token=_require(data, "token", str),
        target=target,
        limit=limit,
        chunk_size=chunk_size,
        page_size=page_size,
        timeout_sec=timeout_sec,
        user_agent=_optional(data, "user_agent", str, DEFAULT_USER_AGENT),
        mirror_resources=_optional(data, "mirror_resources", bool, True),
    )


def load_config(config_path: Path) -> Config:
    """Load the config file and apply defaults for missing optional keys."""
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigFailure(f"cannot read config file {config_path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigFailure(f"cannot parse config file {config_path}: {exc}") from exc
    return parse_config(data)
