from __future__ import annotations

from tasker.config import load_config
from tasker.store.redis_repository import RedisTaskRepository

from .app import create_app

_settings = load_config()
_repository = RedisTaskRepository(url=_settings.redis_url, key_prefix=_settings.store_prefix)
app = create_app(_repository, settings=_settings)
