from typing_extensions import override

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from relforge.core.errors import ConflictError, ReleaseError
from relforge.core.models import ReleaseRecord
from relforge.storage.base import StateStore

KEY_PREFIX = "relforge:release:"
RELEASES_KEY = "relforge:releases"


def _decode(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisStateStore(StateStore):
    """Redis-based release history.

    Each release is a Redis list whose N-th element is revision N. Appends
    WATCH the list and push inside MULTI/EXEC, so a concurrent writer
    aborts the transaction.

    Note: The Redis client is NOT cached because its connection pool is tied
    to the event loop that was running when it connected. run_sync() starts a
    new event loop per call, so every operation opens and closes its own client.
    """

    def __init__(self, url: str) -> None:
        self.url = url

    def _connect(self) -> Redis:
        return Redis.from_url(self.url)

    def _key(self, name: str) -> str:
        return f"{KEY_PREFIX}{name}"

    @override
    async def append(self, record: ReleaseRecord, base_revision: int) -> int:
        """Append inside a WATCH/MULTI transaction on the release's list."""
        key = self._key(record.name)
        try:
            async with self._connect() as client:
                async with client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    latest = int(await pipe.llen(key))
                    if latest != base_revision:
                        raise self._conflict(record.name, base_revision, latest)

                    revision = latest + 1
                    pipe.multi()
                    pipe.rpush(key, record.with_revision(revision).model_dump_json())
                    pipe.sadd(RELEASES_KEY, record.name)
                    await pipe.execute()
        except ConflictError:
            logger.warning(f"Rejected append to '{record.name}' at base revision {base_revision}")
            raise
        except WatchError as e:
            logger.warning(f"Concurrent write to '{record.name}' aborted append")
            raise self._conflict(record.name, base_revision, base_revision + 1) from e
        except RedisError as e:
            raise ReleaseError(f"Redis append failed: {e}") from e

        logger.debug(f"Stored revision {revision} of '{record.name}' in Redis")
        return revision

    @override
    async def history(self, name: str, limit: int | None = None) -> list[ReleaseRecord]:
        """Read the tail of the release's list, newest first."""
        if limit is not None and limit <= 0:
            return []
        start = -limit if limit else 0
        try:
            async with self._connect() as client:
                raw = await client.lrange(self._key(name), start, -1)
        except RedisError as e:
            raise ReleaseError(f"Redis read failed: {e}") from e
        return [ReleaseRecord.model_validate_json(_decode(item)) for item in reversed(raw)]

    @override
    async def get_revision(self, name: str, revision: int) -> ReleaseRecord:
        # LINDEX treats negative indexes as offsets from the tail
        if revision < 1:
            raise self._missing_revision(name, revision)
        try:
            async with self._connect() as client:
                raw = await client.lindex(self._key(name), revision - 1)
        except RedisError as e:
            raise ReleaseError(f"Redis read failed: {e}") from e
        if raw is None:
            raise self._missing_revision(name, revision)
        return ReleaseRecord.model_validate_json(_decode(raw))

    @override
    async def list_releases(self) -> list[str]:
        try:
            async with self._connect() as client:
                members = await client.smembers(RELEASES_KEY)
        except RedisError as e:
            raise ReleaseError(f"Redis read failed: {e}") from e
        return sorted(_decode(m) for m in members)
