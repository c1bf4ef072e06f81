"""Stateless signed session tokens and the FastAPI dependency that reads them."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Callable

from fastapi import Request

from tasker.config import Settings
from tasker.errors import AuthorizationError
from tasker.observability import bind_user, get_json_logger, get_metrics

_TOKEN_VERSION = "v1"

# Every request resolves to this user when no secret key is configured
DEV_USER = "local"


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(raw: str) -> bytes:
    padding = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def _sign(secret: str, payload: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()


def issue_session_token(
    *, secret: str, user_id: str, ttl_seconds: int = 86400, now: int | None = None
) -> str:
    """Issue a signed token naming ``user_id`` that expires after ``ttl_seconds``."""
    if not secret:
        raise ValueError("secret is required to issue session tokens")
    if not user_id or ":" in user_id:
        raise ValueError("user_id must be non-empty and must not contain ':'")
    issued_at = int(now if now is not None else time.time())
    expires_at = issued_at + max(1, ttl_seconds)
    payload = f"{_TOKEN_VERSION}:{user_id}:{expires_at}".encode()
    return f"{_b64url_encode(payload)}.{_b64url_encode(_sign(secret, payload))}"


def verify_session_token(*, token: str, secret: str, now: int | None = None) -> str | None:
    """Return the user id carried by a valid, unexpired token, else None."""
    if not secret or "." not in token:
        return None

    payload_b64, sig_b64 = token.split(".", 1)
    try:
        payload = _b64url_decode(payload_b64)
        signature = _b64url_decode(sig_b64)
    except (binascii.Error, ValueError):
        return None

    if not hmac.compare_digest(signature, _sign(secret, payload)):
        return None

    try:
        version, rest = payload.decode("utf-8").split(":", 1)
        user_id, expires_at_raw = rest.rsplit(":", 1)
        expires_at = int(expires_at_raw)
    except (UnicodeDecodeError, ValueError):
        return None

    if version != _TOKEN_VERSION or not user_id:
        return None

    current = int(now if now is not None else time.time())
    return user_id if current <= expires_at else None


def _bearer(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return value.strip()


def session_dependency(
    settings: Settings, *, clock: Callable[[], float] | None = None
) -> Callable[[Request], str]:
    """Build a FastAPI dependency resolving the current user id.

    Raises AuthorizationError (mapped to 401) for a missing, forged or
    expired token. Without a secret key every caller is ``DEV_USER``.
    """
    logger = get_json_logger("tasker.auth")
    metrics = get_metrics()

    def current_user(request: Request) -> str:
        if not settings.auth_enabled:
            bind_user(DEV_USER)
            return DEV_USER
        token = _bearer(request)
        now = int(clock()) if clock is not None else None
        user_id = verify_session_token(token=token, secret=settings.secret_key, now=now)
        if user_id is None:
            logger.warning(
                "session rejected",
                extra={
                    "event": "auth_failed",
                    "path": request.url.path,
                    "attributes": {"token_present": bool(token)},
                },
            )
            metrics.increment("auth_failures")
            raise AuthorizationError("session missing or expired")
        bind_user(user_id)
        return user_id

    return current_user


__all__ = ["DEV_USER", "issue_session_token", "verify_session_token", "session_dependency"]
