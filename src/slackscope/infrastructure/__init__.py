"""Infrastructure layer."""

from slackscope.infrastructure.persistence import JsonSnapshotStore
from slackscope.infrastructure.rate_gate import RateGate

__all__ = ["JsonSnapshotStore", "RateGate"]
