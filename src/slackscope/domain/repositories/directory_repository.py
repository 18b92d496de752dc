"""SnapshotStore protocol."""

from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel

from slackscope.domain.entities.directory import Collection


class SnapshotStore(Protocol):
    """Repository protocol for on-disk directory snapshots.

    One snapshot per collection. Snapshots are replaced whole, never
    updated in place.
    """

    async def load(self, collection: Collection) -> list[BaseModel] | None:
        """Load the snapshot of a collection.

        Args:
            collection: The collection to load.

        Returns:
            The cached entities, or None if no usable snapshot exists.
        """
        ...

    async def save(self, collection: Collection, entries: Sequence[BaseModel]) -> None:
        """Replace the snapshot of a collection atomically.

        Readers never observe a partially written file.

        Args:
            collection: The collection to save.
            entries: The complete set of cached entities.
        """
        ...
