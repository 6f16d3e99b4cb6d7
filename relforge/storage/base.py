"""Release history storage interface.

History is append-only: records are never edited or deleted, so any past
revision can always be rolled back to. Appends use optimistic concurrency:
the caller states the revision it based its change on and the store refuses
the append if another writer got there first.
"""

from abc import ABC, abstractmethod

from relforge.core.errors import ConflictError, NotFound
from relforge.core.models import ReleaseRecord


class StateStore(ABC):
    """Abstract interface for release history backends."""

    @abstractmethod
    async def append(self, record: ReleaseRecord, base_revision: int) -> int:
        """Append a record as the next revision of its release.

        Args:
            record: Record to persist; its revision is assigned by the store
            base_revision: Latest revision the caller observed (0 for none)

        Returns:
            The revision assigned to the record

        Raises:
            ConflictError: If the release's latest revision is not base_revision
        """
        pass

    @abstractmethod
    async def history(self, name: str, limit: int | None = None) -> list[ReleaseRecord]:
        """Return records for a release, most recent first.

        Args:
            name: Release name
            limit: Maximum number of records to return

        Returns:
            Records, or an empty list for an unknown release
        """
        pass

    @abstractmethod
    async def get_revision(self, name: str, revision: int) -> ReleaseRecord:
        """Fetch one revision of a release.

        Raises:
            NotFound: If the release or revision does not exist
        """
        pass

    @abstractmethod
    async def list_releases(self) -> list[str]:
        """List the names of all releases with history."""
        pass

    async def get_current(self, name: str) -> ReleaseRecord:
        """Fetch the latest record of a release.

        Raises:
            NotFound: If the release has no history
        """
        records = await self.history(name, limit=1)
        if not records:
            raise NotFound(f"Release '{name}' not found")
        return records[0]

    async def latest_revision(self, name: str) -> int:
        """Latest revision number of a release, 0 if it has none."""
        records = await self.history(name, limit=1)
        return records[0].revision if records else 0

    @staticmethod
    def _conflict(name: str, base_revision: int, latest: int) -> ConflictError:
        return ConflictError(
            f"Release '{name}' was modified concurrently",
            details=(
                f"Expected latest revision {base_revision}, found {latest}.\n"
                "Re-read the release and retry the operation."
            ),
        )

    @staticmethod
    def _missing_revision(name: str, revision: int) -> NotFound:
        return NotFound(f"Revision {revision} of release '{name}' not found")
