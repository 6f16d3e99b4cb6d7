"""File-backed release history.

Layout::

    <root>/<release>/00000001.json
    <root>/<release>/00000002.json
    ...

Each revision is written to a temporary file and then hard-linked into
place. ``os.link`` refuses to overwrite, so when two processes race for the
same revision exactly one wins and the other gets a ``ConflictError``.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing_extensions import override

from loguru import logger
from pydantic import ValidationError

from relforge.core.errors import ReleaseError
from relforge.core.models import ReleaseRecord
from relforge.storage.base import StateStore

REVISION_SUFFIX = ".json"


class FileStateStore(StateStore):
    """History store persisting one JSON file per revision."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()

    def _release_dir(self, name: str) -> Path:
        return self.root / name

    def _revision_path(self, name: str, revision: int) -> Path:
        return self._release_dir(name) / f"{revision:08d}{REVISION_SUFFIX}"

    def _revisions(self, name: str) -> list[int]:
        directory = self._release_dir(name)
        if not directory.is_dir():
            return []
        revisions = []
        for path in directory.glob(f"*{REVISION_SUFFIX}"):
            if path.stem.isdigit():
                revisions.append(int(path.stem))
        return sorted(revisions)

    def _read(self, path: Path) -> ReleaseRecord:
        try:
            return ReleaseRecord.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            raise ReleaseError(
                f"Corrupt release record {path}",
                details=str(e),
            ) from e

    def _append_sync(self, record: ReleaseRecord, base_revision: int) -> int:
        revisions = self._revisions(record.name)
        latest = revisions[-1] if revisions else 0
        if latest != base_revision:
            raise self._conflict(record.name, base_revision, latest)

        revision = latest + 1
        stamped = record.with_revision(revision)
        directory = self._release_dir(record.name)
        directory.mkdir(parents=True, exist_ok=True)
        target = self._revision_path(record.name, revision)

        fd, temp_name = tempfile.mkstemp(dir=directory, prefix=".pending-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(stamped.model_dump_json(indent=2))
            try:
                os.link(temp_name, target)
            except FileExistsError:
                raise self._conflict(record.name, base_revision, revision) from None
        finally:
            os.unlink(temp_name)

        return revision

    @override
    async def append(self, record: ReleaseRecord, base_revision: int) -> int:
        """Persist the record as revision ``base_revision + 1``."""
        try:
            revision = await asyncio.to_thread(self._append_sync, record, base_revision)
        except ReleaseError:
            logger.warning(
                f"Rejected append to '{record.name}' at base revision {base_revision}"
            )
            raise
        logger.debug(
            f"Stored revision {revision} of '{record.name}' in {self._release_dir(record.name)}"
        )
        return revision

    def _history_sync(self, name: str, limit: int | None) -> list[ReleaseRecord]:
        revisions = list(reversed(self._revisions(name)))
        if limit is not None:
            revisions = revisions[: max(limit, 0)]
        return [self._read(self._revision_path(name, r)) for r in revisions]

    @override
    async def history(self, name: str, limit: int | None = None) -> list[ReleaseRecord]:
        return await asyncio.to_thread(self._history_sync, name, limit)

    @override
    async def get_revision(self, name: str, revision: int) -> ReleaseRecord:
        path = self._revision_path(name, revision)
        if not path.is_file():
            raise self._missing_revision(name, revision)
        return await asyncio.to_thread(self._read, path)

    @override
    async def list_releases(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            p.name for p in self.root.iterdir() if p.is_dir() and self._revisions(p.name)
        )
