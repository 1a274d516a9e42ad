"""
Health checks evaluated for each monitored pipeline.

Checks only decide; they return AlertCandidate objects and leave
persistence to the engine. Metrics that Prometheus cannot supply, or a
source database that cannot be reached, make the dependent check a no-op.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from cdcstream.utils.prometheus.metrics_client import (
    PrometheusMetricsClient,
    SOURCE_POLL_RATE,
    SOURCE_WRITE_RATE,
    TASK_ERRORS_LOGGED,
)
from pipelines.models import MonitoringThresholds, Pipeline, PipelineConnector
from .state import MonitorState
from .wal import SlotWal, postgres_source_config, read_slot_wal, slot_name_for

logger = logging.getLogger(__name__)


@dataclass
class AlertCandidate:
    alert_type: str
    severity: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    connector_type: Optional[str] = None


@dataclass
class PipelineSnapshot:
    """Everything the checks need to know about one pipeline in one cycle"""
    pipeline: Pipeline
    thresholds: MonitoringThresholds
    now: datetime
    source: Optional[PipelineConnector] = None
    sink: Optional[PipelineConnector] = None
    statuses: Dict[str, Optional[Dict]] = field(default_factory=dict)

    def connectors(self):
        for connector_type, connector in (('source', self.source), ('sink', self.sink)):
            if connector is not None:
                yield connector_type, connector

    @property
    def metrics_eligible(self) -> bool:
        return self.pipeline.status == 'running' and self.source is not None


# ==========================================
# Connector state checks
# ==========================================

def check_connector_failed(snapshot: PipelineSnapshot) -> List[AlertCandidate]:
    """Connector FAILED and task FAILED, for source and sink independently."""
    alerts = []
    for connector_type, connector in snapshot.connectors():
        status = snapshot.statuses.get(connector_type)
        if not status:
            continue

        connector_status = status.get('connector') or {}
        if connector_status.get('state') == 'FAILED':
            alerts.append(AlertCandidate(
                alert_type='CONNECTOR_FAILED',
                severity='critical',
                message=f'{connector_type.upper()} connector "{connector.name}" is FAILED',
                metadata={
                    'connector_name': connector.name,
                    'connector_type': connector_type,
                    'error_trace': connector_status.get('trace'),
                    'worker_id': connector_status.get('worker_id'),
                },
                connector_type=connector_type,
            ))

        failed_tasks = [t for t in (status.get('tasks') or []) if t.get('state') == 'FAILED']
        if failed_tasks:
            alerts.append(AlertCandidate(
                alert_type='TASK_FAILED',
                severity='critical',
                message=f'{len(failed_tasks)} {connector_type} task(s) FAILED for connector "{connector.name}"',
                metadata={
                    'connector_name': connector.name,
                    'connector_type': connector_type,
                    'failed_tasks': [
                        {'id': t.get('id'), 'worker_id': t.get('worker_id'), 'trace': t.get('trace')}
                        for t in failed_tasks
                    ],
                },
                connector_type=connector_type,
            ))
    return alerts


def check_paused(snapshot: PipelineSnapshot, state: MonitorState) -> List[AlertCandidate]:
    """
    Alert once a connector has stayed PAUSED longer than the threshold.

    The pause clock starts the first time the engine sees the connector
    paused, not when it was actually paused.
    """
    alerts = []
    threshold = snapshot.thresholds.pause_duration_seconds
    pipeline_id = snapshot.pipeline.id

    for connector_type, connector in snapshot.connectors():
        status = snapshot.statuses.get(connector_type)
        if not status:
            continue

        if (status.get('connector') or {}).get('state') != 'PAUSED':
            state.clear_paused(pipeline_id, connector_type)
            continue

        paused_since = state.mark_paused(pipeline_id, connector_type, snapshot.now)
        paused_seconds = (snapshot.now - paused_since).total_seconds()
        if paused_seconds <= threshold:
            continue

        alerts.append(AlertCandidate(
            alert_type='CONNECTOR_PAUSED',
            severity='warning',
            message=(
                f'{connector_type.upper()} connector "{connector.name}" has been PAUSED for '
                f'{int(paused_seconds)}s (threshold: {threshold:g}s)'
            ),
            metadata={
                'connector_name': connector.name,
                'connector_type': connector_type,
                'paused_duration_seconds': int(paused_seconds),
                'threshold_seconds': threshold,
            },
            connector_type=connector_type,
        ))
    return alerts


# ==========================================
# Metric checks (running pipelines with a source)
# ==========================================

def check_high_lag(snapshot: PipelineSnapshot, metrics: PrometheusMetricsClient) -> List[AlertCandidate]:
    name = snapshot.source.name
    write_rate = metrics.query_first(SOURCE_WRITE_RATE, name)
    poll_rate = metrics.query_first(SOURCE_POLL_RATE, name)
    if write_rate is None or poll_rate is None:
        return []

    # Rate difference scaled to an approximate millisecond lag
    lag_ms = abs(poll_rate - write_rate) * 100
    threshold = snapshot.thresholds.lag_ms
    if lag_ms <= threshold:
        return []

    return [AlertCandidate(
        alert_type='HIGH_LAG',
        severity='warning',
        message=f'Connector "{name}" lag is {lag_ms:.0f}ms (threshold: {threshold:g}ms)',
        metadata={
            'connector_name': name,
            'lag_ms': lag_ms,
            'threshold_ms': threshold,
            'poll_rate': poll_rate,
            'write_rate': write_rate,
        },
        connector_type='source',
    )]


def check_throughput_drop(
    snapshot: PipelineSnapshot,
    metrics: PrometheusMetricsClient,
    state: MonitorState
) -> List[AlertCandidate]:
    name = snapshot.source.name
    poll_rate = metrics.query_first(SOURCE_POLL_RATE, name)
    if poll_rate is None:
        return []

    current = poll_rate * 60
    previous = state.swap_throughput(snapshot.pipeline.id, current)
    if not previous or previous <= 0:
        return []

    drop_percent = (previous - current) / previous * 100
    threshold = snapshot.thresholds.throughput_drop_percent
    if drop_percent <= threshold:
        return []

    return [AlertCandidate(
        alert_type='THROUGHPUT_DROP',
        severity='warning',
        message=(
            f'Connector "{name}" throughput dropped {drop_percent:.1f}% '
            f'(from {previous:.0f} to {current:.0f} rec/min)'
        ),
        metadata={
            'connector_name': name,
            'previous_throughput': previous,
            'current_throughput': current,
            'drop_percent': drop_percent,
            'threshold_percent': threshold,
        },
        connector_type='source',
    )]


def check_error_rate(snapshot: PipelineSnapshot, metrics: PrometheusMetricsClient) -> List[AlertCandidate]:
    name = snapshot.source.name
    error_count = metrics.query_first(TASK_ERRORS_LOGGED, name)
    if not error_count or error_count <= 0:
        return []

    error_rate = error_count / (error_count + 100) * 100
    threshold = snapshot.thresholds.error_rate_percent
    if error_rate <= threshold:
        return []

    return [AlertCandidate(
        alert_type='HIGH_ERROR_RATE',
        severity='warning',
        message=f'Connector "{name}" error rate is {error_rate:.2f}% ({error_count:.0f} errors)',
        metadata={
            'connector_name': name,
            'error_count': error_count,
            'error_rate_percent': error_rate,
            'threshold_percent': threshold,
        },
        connector_type='source',
    )]


WalReader = Callable[[Dict[str, Any], str], Optional[SlotWal]]


# ==========================================
# WAL size (Postgres sources, running or paused)
# ==========================================

def check_wal_size(snapshot: PipelineSnapshot, state: MonitorState, wal_reader: WalReader) -> List[AlertCandidate]:
    """
    Alert when the source's replication slot retains more WAL than
    ``alert_threshold`` percent of ``max_wal_size``.

    Runs at most once per ``wal_check_interval_seconds`` per pipeline, and
    only for Postgres sources with log monitoring enabled.
    """
    pipeline = snapshot.pipeline
    if not pipeline.enable_log_monitoring:
        return []

    config = postgres_source_config(snapshot.source)
    if config is None:
        return []

    if not state.claim_wal_check(pipeline.id, snapshot.now, pipeline.wal_check_interval_seconds):
        return []

    slot_name = slot_name_for(config, pipeline.name)
    try:
        wal = wal_reader(config, slot_name)
    except Exception as e:
        logger.warning(f"[{pipeline.name}] WAL size check failed: {e}")
        return []

    if wal is None:
        logger.info(f"[{pipeline.name}] No replication slot found (slot: {slot_name})")
        return []

    threshold_mb = pipeline.wal_alert_threshold_mb
    logger.debug(f"[{pipeline.name}] WAL size {wal.wal_size_mb:.2f} MB (threshold: {threshold_mb:.2f} MB)")
    if wal.wal_size_mb <= threshold_mb:
        return []

    return [AlertCandidate(
        alert_type='WAL_SIZE_EXCEEDED',
        severity='warning',
        message=(
            f'WAL size {wal.wal_size_mb:.2f} MB exceeds threshold {threshold_mb:.2f} MB '
            f'({pipeline.alert_threshold}% of {pipeline.max_wal_size} MB)'
        ),
        metadata={
            'wal_size_mb': wal.wal_size_mb,
            'threshold_mb': threshold_mb,
            'max_wal_size_mb': pipeline.max_wal_size,
            'alert_threshold_percent': pipeline.alert_threshold,
            'slot_name': slot_name,
            'source_host': config.get('database.hostname'),
            'source_database': config.get('database.dbname'),
        },
        connector_type='source',
    )]


def run_checks(
    snapshot: PipelineSnapshot,
    metrics: PrometheusMetricsClient,
    state: MonitorState,
    wal_reader: WalReader = read_slot_wal
) -> List[AlertCandidate]:
    """Evaluate every check for one pipeline, in a fixed order."""
    alerts = check_connector_failed(snapshot)
    alerts += check_paused(snapshot, state)

    if snapshot.metrics_eligible:
        alerts += check_high_lag(snapshot, metrics)
        alerts += check_throughput_drop(snapshot, metrics, state)
        alerts += check_error_rate(snapshot, metrics)

    alerts += check_wal_size(snapshot, state, wal_reader)
    return alerts
