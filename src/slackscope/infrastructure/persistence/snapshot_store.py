"""JSON file implementation of SnapshotStore."""

import asyncio
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, TypeAdapter, ValidationError

from slackscope.config.models import CacheConfig
from slackscope.domain.entities.directory import (
    CachedChannel,
    CachedEmoji,
    CachedUser,
    Collection,
)
from slackscope.infrastructure.logging import get_logger

logger = get_logger(__name__)

_ADAPTERS: dict[Collection, TypeAdapter] = {
    Collection.USERS: TypeAdapter(list[CachedUser]),
    Collection.CHANNELS: TypeAdapter(list[CachedChannel]),
    Collection.EMOJI: TypeAdapter(list[CachedEmoji]),
}


class JsonSnapshotStore:
    """Stores each collection as a JSON array in its own file.

    Writes go to a temporary file in the target directory which is then
    renamed over the snapshot, so a concurrent reader or a restarted process
    sees either the previous or the new document.
    """

    def __init__(self, paths: dict[Collection, Path]) -> None:
        """Initialize the store.

        Args:
            paths: Snapshot file location per collection.
        """
        self._paths = dict(paths)

    @classmethod
    def from_config(cls, config: CacheConfig, impersonated: bool) -> "JsonSnapshotStore":
        """Build a store from cache configuration.

        Channel snapshots from impersonated sessions carry DM data shaped by
        the edge listing, so they live in a separate file.

        Args:
            config: Cache configuration.
            impersonated: Whether session credentials are in use.

        Returns:
            A configured store.
        """
        directory = config.directory
        channels_default = "channels_cache_v2.json" if impersonated else "channels_cache.json"
        return cls(
            {
                Collection.USERS: config.users_file or directory / "users_cache.json",
                Collection.CHANNELS: config.channels_file or directory / channels_default,
                Collection.EMOJI: config.emojis_file or directory / "emojis_cache.json",
            }
        )

    def path_for(self, collection: Collection) -> Path:
        """Return the snapshot file of a collection."""
        return self._paths[collection]

    async def load(self, collection: Collection) -> list[BaseModel] | None:
        """Load the snapshot of a collection.

        A missing file yields None. An unreadable or corrupt file is logged
        and also yields None so the collection falls back to a network
        refresh.
        """
        path = self._paths[collection]
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(
                "Failed to read snapshot, will refetch",
                collection=collection.value,
                cache_file=str(path),
                error=str(e),
            )
            return None
        try:
            entries = _ADAPTERS[collection].validate_json(data)
        except ValidationError as e:
            logger.warning(
                "Failed to parse snapshot, will refetch",
                collection=collection.value,
                cache_file=str(path),
                error=str(e),
            )
            return None
        logger.info(
            "Loaded snapshot",
            collection=collection.value,
            count=len(entries),
            cache_file=str(path),
        )
        return entries

    async def save(self, collection: Collection, entries: Sequence[BaseModel]) -> None:
        """Replace the snapshot of a collection atomically."""
        path = self._paths[collection]
        data = _ADAPTERS[collection].dump_json(list(entries), indent=2)
        await asyncio.to_thread(_write_atomic, path, data)
        logger.info(
            "Wrote snapshot",
            collection=collection.value,
            count=len(entries),
            cache_file=str(path),
        )


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        # Leave no temp file behind on failure
        Path(tmp_name).unlink(missing_ok=True)
        raise
