"""Factory for obtaining the configured release history backend."""

from relforge.config import Settings
from relforge.storage.base import StateStore
from relforge.storage.file import FileStateStore
from relforge.storage.memory import InMemoryStateStore


def get_store(settings: Settings) -> StateStore:
    """Get the state store selected by ``settings.state_backend``."""

    if settings.state_backend == "redis":
        from relforge.storage.redis import RedisStateStore

        return RedisStateStore(settings.redis_url)

    if settings.state_backend == "memory":
        return InMemoryStateStore()

    return FileStateStore(settings.state_dir)
