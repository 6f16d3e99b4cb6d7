"""Shared fixtures: the three-tier 'webapp' release and in-memory backends."""

import asyncio

import pytest
from redis.exceptions import WatchError

from relforge.cluster import InMemoryCluster
from relforge.core.manager import ReleaseManager
from relforge.core.models import ComponentSpec, Exposure, ReleaseSpec
from relforge.storage import InMemoryStateStore


def make_webapp(
    frontend_image: str = "registry.example.com/webapp-frontend:1.0.0",
    backend_replicas: int = 2,
) -> ReleaseSpec:
    """Build the 'webapp' release: frontend, backend, database."""
    return ReleaseSpec(
        name="webapp",
        components=(
            ComponentSpec(
                name="frontend",
                image=frontend_image,
                replicas=2,
                ports=(80,),
                exposure=Exposure.LOADBALANCED,
            ),
            ComponentSpec(
                name="backend",
                image="registry.example.com/webapp-backend:1.0.0",
                replicas=backend_replicas,
                ports=(8080,),
                env={"DATABASE_HOST": "webapp-database"},
            ),
            ComponentSpec(
                name="database",
                image="registry.example.com/webapp-db:1.0.0",
                replicas=1,
                ports=(5432,),
            ),
        ),
    )


@pytest.fixture
def webapp() -> ReleaseSpec:
    return make_webapp()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def cluster() -> InMemoryCluster:
    return InMemoryCluster()


@pytest.fixture
def manager(store: InMemoryStateStore, cluster: InMemoryCluster) -> ReleaseManager:
    return ReleaseManager(store, cluster, apply_timeout=5.0)


@pytest.fixture
def webapp_factory():
    """Factory for webapp variants (frontend image, backend replicas)."""
    return make_webapp


class FakeRedisServer:
    """Data shared by FakeRedis clients, standing in for the redis.asyncio module's Redis."""

    def __init__(self) -> None:
        self.lists: dict[str, list[bytes]] = {}
        self.sets: dict[str, set[bytes]] = {}
        self.clients: list[FakeRedis] = []

    def from_url(self, url: str, **kwargs) -> "FakeRedis":
        client = FakeRedis(self)
        self.clients.append(client)
        return client


class FakeRedis:
    """Client bound to the first event loop it runs on, like a redis.asyncio pool."""

    def __init__(self, server: FakeRedisServer) -> None:
        self.server = server
        self.loop: asyncio.AbstractEventLoop | None = None
        self.closed = False

    def _check(self) -> None:
        loop = asyncio.get_running_loop()
        if self.loop is None:
            self.loop = loop
        elif self.loop is not loop:
            raise RuntimeError("Redis client is attached to a different loop")
        if self.closed:
            raise RuntimeError("Redis client is closed")

    async def __aenter__(self) -> "FakeRedis":
        self._check()
        return self

    async def __aexit__(self, *exc_info) -> bool:
        self.closed = True
        return False

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def lrange(self, key: str, start: int, end: int) -> list[bytes]:
        self._check()
        items = self.server.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    async def lindex(self, key: str, index: int) -> bytes | None:
        self._check()
        items = self.server.lists.get(key, [])
        return items[index] if 0 <= index < len(items) else None

    async def smembers(self, key: str) -> set[bytes]:
        self._check()
        return set(self.server.sets.get(key, set()))


class FakePipeline:
    """WATCH/MULTI/EXEC over a FakeRedisServer."""

    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.watched: dict[str, int] = {}
        self.queued: list[tuple[str, str, bytes]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def watch(self, key: str) -> None:
        self.client._check()
        self.watched[key] = len(self.client.server.lists.get(key, []))

    async def llen(self, key: str) -> int:
        self.client._check()
        return len(self.client.server.lists.get(key, []))

    def multi(self) -> None:
        pass

    def rpush(self, key: str, value: str) -> None:
        self.queued.append(("rpush", key, value.encode()))

    def sadd(self, key: str, member: str) -> None:
        self.queued.append(("sadd", key, member.encode()))

    async def execute(self) -> list[int]:
        self.client._check()
        server = self.client.server
        for key, length in self.watched.items():
            if len(server.lists.get(key, [])) != length:
                raise WatchError("Watched variable changed.")
        for command, key, value in self.queued:
            if command == "rpush":
                server.lists.setdefault(key, []).append(value)
            else:
                server.sets.setdefault(key, set()).add(value)
        return [1] * len(self.queued)


@pytest.fixture
def redis_server(monkeypatch: pytest.MonkeyPatch) -> FakeRedisServer:
    """Route RedisStateStore connections to an in-process fake server."""
    server = FakeRedisServer()
    monkeypatch.setattr("relforge.storage.redis.Redis", server)
    return server
