"""Persistence infrastructure."""

from slackscope.infrastructure.persistence.snapshot_store import JsonSnapshotStore

__all__ = ["JsonSnapshotStore"]
