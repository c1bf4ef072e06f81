from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str
    store_prefix: str
    secret_key: str
    session_ttl: int
    data_dir: str
    undo_limit: int
    api_url: str
    api_token: str
    http_timeout: float

    @property
    def auth_enabled(self) -> bool:
        return bool(self.secret_key)


def _int(raw: Any, default: int, minimum: int) -> int:
    text = str(raw or "").strip()
    try:
        value = int(text) if text else default
    except ValueError:
        value = default
    return max(minimum, value)


def _float(raw: Any, default: float) -> float:
    text = str(raw or "").strip()
    try:
        value = float(text) if text else default
    except ValueError:
        return default
    return value if value > 0 else default


def load_config(env: dict[str, str] | None = None) -> Settings:
    e: dict[str, Any] = dict(os.environ)
    if env:
        e.update(env)
    return Settings(
        redis_url=e.get("REDIS_URL") or "redis://localhost:6379/0",
        store_prefix=(e.get("TASKER_STORE_PREFIX") or "tasker").strip(),
        secret_key=(e.get("TASKER_SECRET_KEY") or "").strip(),
        session_ttl=_int(e.get("TASKER_SESSION_TTL"), 86400, 60),
        data_dir=e.get("TASKER_DATA_DIR") or os.path.join("~", ".tasker"),
        undo_limit=_int(e.get("TASKER_UNDO_LIMIT"), 10, 1),
        api_url=(e.get("TASKER_API_URL") or "http://localhost:8000").rstrip("/"),
        api_token=(e.get("TASKER_API_TOKEN") or "").strip(),
        http_timeout=_float(e.get("TASKER_HTTP_TIMEOUT"), 10.0),
    )


__all__ = ["Settings", "load_config"]
