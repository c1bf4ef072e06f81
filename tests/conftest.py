from __future__ import annotations

import os
import time
from collections.abc import Callable

import pytest
import redis

from tasker.observability import reset_metrics
from tests.helpers.store import FakeClock


def _wait_until(timeout_s: float, pause_s: float, check: Callable[[], bool]) -> bool:
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        if check():
            return True
        time.sleep(pause_s)
    return False


def _redis_ping(url: str) -> bool:
    try:
        return bool(redis.Redis.from_url(url).ping())
    except redis.exceptions.RedisError:
        return False


@pytest.fixture(scope="session")
def redis_url() -> str:
    """Provide a reachable Redis URL, preferring REDIS_URL, else skip.

    Priority:
    1) REDIS_URL env if reachable
    2) localhost:6379 if reachable
    """
    env_url = os.getenv("REDIS_URL")
    if env_url and _wait_until(5.0, 0.2, lambda: _redis_ping(env_url)):
        return env_url

    local_url = "redis://localhost:6379/0"
    if _wait_until(1.0, 0.2, lambda: _redis_ping(local_url)):
        return local_url

    pytest.skip("Redis not available; set REDIS_URL or start a local Redis")


@pytest.fixture()
def unique_prefix() -> str:
    # millisecond prefix to avoid collisions
    return f"test:{int(time.time() * 1000)}"


@pytest.fixture(autouse=True)
def _fresh_metrics() -> None:
    reset_metrics()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
