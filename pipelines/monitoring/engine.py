"""
Monitoring Engine - periodic health sweep over all active pipelines.

Each cycle:
1. Reload thresholds from MonitoringSettings
2. Fetch connector status and metrics for every running/paused pipeline,
   several pipelines at a time, each bounded by its own timeout
3. Check replication slot WAL retention of Postgres sources when due
4. Persist the resulting alerts on the calling thread

One pipeline failing never aborts the sweep, and a tick that arrives while
the previous cycle is still running is skipped.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from cdcstream.utils.prometheus.metrics_client import PrometheusMetricsClient
from pipelines.logging_utils import log_operation, monitoring_logger
from pipelines.metrics import monitored_pipelines, monitoring_cycle_duration, monitoring_cycles_total
from pipelines.models import MonitoringSettings, MonitoringThresholds, Pipeline
from pipelines.orchestration.status import ConnectorStatusAggregator
from .alerts import AlertStore
from .checks import AlertCandidate, PipelineSnapshot, WalReader, run_checks
from .state import MonitorState
from .wal import read_slot_wal

logger = logging.getLogger(__name__)

# Floor for the wait between cycles
MIN_INTERVAL_SECONDS = 1.0


@dataclass
class CycleSummary:
    checked: int = 0
    alerts_raised: int = 0
    alerts_created: int = 0
    failures: List[str] = field(default_factory=list)
    skipped: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            'checked': self.checked,
            'alerts_raised': self.alerts_raised,
            'alerts_created': self.alerts_created,
            'failures': self.failures,
            'skipped': self.skipped,
            'duration_seconds': round(self.duration_seconds, 3),
        }


class MonitoringEngine:
    """
    Proactive health monitor for CDC pipelines.

    All collaborators are injectable so the engine can be driven
    deterministically: pass a fake ``clock`` and mocked clients, then call
    ``run_cycle()`` directly.
    """

    def __init__(
        self,
        connector_manager: Optional[KafkaConnectManager] = None,
        metrics_client: Optional[PrometheusMetricsClient] = None,
        status_aggregator: Optional[ConnectorStatusAggregator] = None,
        alert_store: Optional[AlertStore] = None,
        clock: Callable[[], datetime] = timezone.now,
        state: Optional[MonitorState] = None,
        max_workers: Optional[int] = None,
        check_timeout: Optional[float] = None,
        wal_reader: Optional[WalReader] = None
    ):
        monitoring_config = getattr(settings, 'MONITORING', {})

        self.connector_manager = connector_manager or KafkaConnectManager()
        self.metrics_client = metrics_client or PrometheusMetricsClient()
        self.status_aggregator = status_aggregator or ConnectorStatusAggregator(self.connector_manager)
        self.alert_store = alert_store or AlertStore()
        self.clock = clock
        self.state = state or MonitorState()
        self.wal_reader = wal_reader or read_slot_wal
        self.max_workers = max_workers or monitoring_config.get('MAX_CONCURRENT_PIPELINES', 4)
        self.check_timeout = check_timeout or monitoring_config.get('CHECK_TIMEOUT_SECONDS', 15)

        self.thresholds = MonitoringThresholds.defaults()
        self._in_flight = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ==========================================
    # Cycle
    # ==========================================

    def run_cycle(self) -> CycleSummary:
        """Run one sweep, or skip it when another sweep is still in progress."""
        if not self._in_flight.acquire(blocking=False):
            logger.warning("Previous monitoring cycle still running, skipping this tick")
            monitoring_cycles_total.labels(outcome='skipped').inc()
            return CycleSummary(skipped=True)

        started = time.monotonic()
        try:
            with log_operation(monitoring_logger, 'monitoring_cycle'), monitoring_cycle_duration.time():
                summary = self._sweep()
        except Exception:
            monitoring_cycles_total.labels(outcome='failed').inc()
            raise
        finally:
            self._in_flight.release()

        summary.duration_seconds = time.monotonic() - started
        monitoring_cycles_total.labels(outcome='completed').inc()
        logger.info(
            f"Monitoring cycle done: {summary.checked} pipelines, "
            f"{summary.alerts_raised} alerts ({summary.alerts_created} new), "
            f"{len(summary.failures)} failures in {summary.duration_seconds:.2f}s"
        )
        return summary

    def _sweep(self) -> CycleSummary:
        self.thresholds = MonitoringSettings.load_thresholds()
        now = self.clock()

        pipelines = list(
            Pipeline.objects
            .filter(status__in=Pipeline.MONITORED_STATUSES, deleted_at__isnull=True)
            .prefetch_related('connectors')
        )
        monitored_pipelines.set(len(pipelines))
        summary = CycleSummary(checked=len(pipelines))
        self.state.prune(p.id for p in pipelines)

        if pipelines:
            logger.debug(f"Checking {len(pipelines)} pipelines")
            snapshots = [self._snapshot(p, now) for p in pipelines]
            for snapshot, candidates in self._evaluate(snapshots, summary):
                self._persist(snapshot.pipeline, candidates, summary)
        return summary

    def _snapshot(self, pipeline: Pipeline, now: datetime) -> PipelineSnapshot:
        snapshot = PipelineSnapshot(pipeline=pipeline, thresholds=self.thresholds, now=now)
        for connector in pipeline.connectors.all():
            setattr(snapshot, connector.type, connector)
        return snapshot

    def check_pipeline(self, snapshot: PipelineSnapshot) -> List[AlertCandidate]:
        """Fetch live status for one pipeline and evaluate its checks. No Django database access."""
        connectors = [c for _, c in snapshot.connectors()]
        if not connectors:
            return []
        snapshot.statuses = self.status_aggregator.fetch_statuses(connectors)
        return run_checks(snapshot, self.metrics_client, self.state, self.wal_reader)

    def _evaluate(self, snapshots: List[PipelineSnapshot], summary: CycleSummary):
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(snapshots)),
            thread_name_prefix='pipeline-check',
        )
        try:
            futures = [(s, executor.submit(self.check_pipeline, s)) for s in snapshots]
            for snapshot, future in futures:
                name = snapshot.pipeline.name
                try:
                    yield snapshot, future.result(timeout=self.check_timeout)
                except FutureTimeoutError:
                    logger.error(f"[{name}] Health checks timed out after {self.check_timeout}s")
                    summary.failures.append(name)
                except Exception as e:
                    logger.error(f"[{name}] Error checking pipeline: {e}", exc_info=True)
                    summary.failures.append(name)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _persist(self, pipeline: Pipeline, candidates: List[AlertCandidate], summary: CycleSummary):
        for candidate in candidates:
            try:
                _, created = self.alert_store.raise_alert(
                    pipeline,
                    candidate.alert_type,
                    candidate.severity,
                    candidate.message,
                    candidate.metadata,
                    connector_type=candidate.connector_type,
                )
            except Exception as e:
                logger.error(f"[{pipeline.name}] Failed to store {candidate.alert_type} alert: {e}", exc_info=True)
                if pipeline.name not in summary.failures:
                    summary.failures.append(pipeline.name)
                continue
            summary.alerts_raised += 1
            if created:
                summary.alerts_created += 1

    # ==========================================
    # Timer
    # ==========================================

    @property
    def interval_seconds(self) -> float:
        return max(self.thresholds.check_interval_ms / 1000, MIN_INTERVAL_SECONDS)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_forever(self):
        """Run cycles until ``stop()`` is called, sleeping the configured interval in between."""
        logger.info("=" * 60)
        logger.info("MONITORING ENGINE STARTED")
        logger.info("=" * 60)

        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Monitoring cycle failed: {e}", exc_info=True)
            finally:
                close_old_connections()
            self._stop_event.wait(self.interval_seconds)

        logger.info("Monitoring engine stopped")

    def start(self):
        if self.running:
            logger.warning("Monitoring engine already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name='monitoring-engine', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
