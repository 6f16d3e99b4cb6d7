"""In-memory release history, safe for use from several threads."""

from __future__ import annotations

import threading
from typing_extensions import override

from loguru import logger

from relforge.core.models import ReleaseRecord
from relforge.storage.base import StateStore


class InMemoryStateStore(StateStore):
    """Process-local history store.

    All reads and writes hold a single lock, so concurrent appends from
    different threads (each with its own event loop) serialize correctly.
    """

    def __init__(self) -> None:
        self._records: dict[str, list[ReleaseRecord]] = {}
        self._lock = threading.Lock()

    @override
    async def append(self, record: ReleaseRecord, base_revision: int) -> int:
        """Append under the lock after checking the base revision."""
        with self._lock:
            records = self._records.setdefault(record.name, [])
            latest = records[-1].revision if records else 0
            if latest != base_revision:
                logger.warning(
                    f"Rejected append to '{record.name}': base revision "
                    f"{base_revision}, latest {latest}"
                )
                raise self._conflict(record.name, base_revision, latest)

            revision = latest + 1
            records.append(record.with_revision(revision))

        logger.debug(f"Stored revision {revision} of '{record.name}' in memory")
        return revision

    @override
    async def history(self, name: str, limit: int | None = None) -> list[ReleaseRecord]:
        with self._lock:
            records = list(reversed(self._records.get(name, [])))
        return records[: max(limit, 0)] if limit is not None else records

    @override
    async def get_revision(self, name: str, revision: int) -> ReleaseRecord:
        with self._lock:
            records = self._records.get(name, [])
            # Revisions are 1-based and gap-free
            if 1 <= revision <= len(records):
                return records[revision - 1]
        raise self._missing_revision(name, revision)

    @override
    async def list_releases(self) -> list[str]:
        with self._lock:
            return sorted(name for name, records in self._records.items() if records)
