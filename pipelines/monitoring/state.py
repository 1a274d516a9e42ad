"""
Cross-cycle memory of the monitoring engine.
"""

import threading
from datetime import datetime
from typing import Dict, Iterable, Optional, Set, Tuple

PauseKey = Tuple[int, str]


class MonitorState:
    """
    Pause-start timestamps, last observed throughput and last WAL check
    time per pipeline.

    Owned by one MonitoringEngine. Pipelines are checked on worker threads,
    so every access goes through a lock. Once ``prune`` has run, only the
    pipelines it was given can gain entries, so a worker that outlives its
    cycle cannot bring back a pruned pipeline.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Optional[Set[int]] = None
        self.paused_since: Dict[PauseKey, datetime] = {}
        self.previous_throughput: Dict[int, float] = {}
        self.last_wal_check: Dict[int, datetime] = {}

    def _tracked(self, pipeline_id: int) -> bool:
        return self._active is None or pipeline_id in self._active

    # Pause tracking

    def mark_paused(self, pipeline_id: int, connector_type: str, now: datetime) -> datetime:
        """Return when the connector was first seen paused, starting the clock if needed."""
        with self._lock:
            if not self._tracked(pipeline_id):
                return self.paused_since.get((pipeline_id, connector_type), now)
            return self.paused_since.setdefault((pipeline_id, connector_type), now)

    def clear_paused(self, pipeline_id: int, connector_type: str):
        with self._lock:
            self.paused_since.pop((pipeline_id, connector_type), None)

    # Throughput tracking

    def swap_throughput(self, pipeline_id: int, current: float) -> Optional[float]:
        """Store ``current`` and return the value it replaced."""
        with self._lock:
            previous = self.previous_throughput.get(pipeline_id)
            if self._tracked(pipeline_id):
                self.previous_throughput[pipeline_id] = current
            return previous

    # WAL check scheduling

    def claim_wal_check(self, pipeline_id: int, now: datetime, interval_seconds: float) -> bool:
        """
        Return True when the pipeline's WAL check is due, recording ``now``
        as its last check. A pipeline never checked before is always due.
        """
        with self._lock:
            last = self.last_wal_check.get(pipeline_id)
            if last is not None and (now - last).total_seconds() < interval_seconds:
                return False
            if not self._tracked(pipeline_id):
                return False
            self.last_wal_check[pipeline_id] = now
            return True

    def prune(self, active_pipeline_ids: Iterable[int]):
        """Forget pipelines that are no longer monitored."""
        active = set(active_pipeline_ids)
        with self._lock:
            self._active = active
            for key in [k for k in self.paused_since if k[0] not in active]:
                del self.paused_since[key]
            for tracked in (self.previous_throughput, self.last_wal_check):
                for pipeline_id in [p for p in tracked if p not in active]:
                    del tracked[pipeline_id]
