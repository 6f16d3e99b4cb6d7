"""Release history storage backends."""

from .base import StateStore
from .factory import get_store
from .file import FileStateStore
from .memory import InMemoryStateStore
from .redis import RedisStateStore

__all__ = ["StateStore", "get_store", "FileStateStore", "InMemoryStateStore", "RedisStateStore"]
