"""
Read-only pipeline reports assembled from live Kafka Connect status and
Prometheus metrics: activity, monitoring dashboard, logs and state changes.

Nothing here is persisted. Missing metrics read as zero, and an unreachable
connector simply contributes no entries.
"""

import logging
import math
from datetime import datetime
from typing import Callable, Dict, List, Optional

from django.utils import timezone

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from cdcstream.utils.prometheus.metrics_client import (
    DEBEZIUM_EVENTS_SEEN,
    PrometheusMetricsClient,
    SINK_READ_RATE,
    SINK_SEND_RATE,
    SINK_SEND_TOTAL,
    SOURCE_POLL_RATE,
    SOURCE_POLL_TOTAL,
    SOURCE_WRITE_RATE,
    SOURCE_WRITE_TOTAL,
    TASK_ERRORS_LOGGED,
)
from pipelines.models import Pipeline

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 100
DEFAULT_STATE_CHANGE_LIMIT = 50
RECENT_EVENT_COUNT = 10

# Task lag (ms) above which a task is reported as warning / error
TASK_LAG_WARNING_MS = 500
TASK_LAG_ERROR_MS = 2000


class NoConnectorsError(Exception):
    """The pipeline has no connector of the kind a report needs"""
    pass


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def per_minute(rate: float) -> int:
    """Records/second to whole records/minute."""
    return round_half_up(rate * 60)


def format_rate(rate: float) -> str:
    if rate == 0:
        return '0 rec/s'
    if rate >= 1000:
        return f"{rate / 1000:.2f}K/s"
    return f"{rate:.1f} rec/s"


def estimated_lag_ms(poll_rate: float, write_rate: float) -> float:
    return abs(poll_rate - write_rate) * 100


def log_severity(state: Optional[str]) -> str:
    if state == 'FAILED':
        return 'error'
    if state == 'RUNNING':
        return 'info'
    return 'warn'


def event_severity(event_type: str) -> str:
    if event_type == 'error':
        return 'error'
    if event_type == 'warning':
        return 'warn'
    return 'info'


class PipelineReports:
    """Builds the dashboard views of one pipeline"""

    def __init__(
        self,
        pipeline: Pipeline,
        connector_manager: Optional[KafkaConnectManager] = None,
        metrics_client: Optional[PrometheusMetricsClient] = None,
        clock: Callable[[], datetime] = timezone.now
    ):
        self.pipeline = pipeline
        self.connector_manager = connector_manager or KafkaConnectManager()
        self.metrics = metrics_client or PrometheusMetricsClient()
        self.clock = clock
        self.source = pipeline.source_connector
        self.sink = pipeline.sink_connector

    def _status(self, connector) -> Optional[Dict]:
        if connector is None:
            return None
        exists, status = self.connector_manager.get_connector_status(connector.name)
        return status if exists else None

    # ==========================================
    # Activity
    # ==========================================

    def activity(self, time_range: str = '24h') -> Dict:
        """Ingestion, transformation and load totals with per-minute rates."""
        poll_total = poll_rate = write_total = write_rate = 0.0
        send_total = send_rate = 0.0

        if self.source is not None:
            name = self.source.name
            poll_total = self.metrics.query_sum_or_zero(SOURCE_POLL_TOTAL, name)
            poll_rate = self.metrics.query_sum_or_zero(SOURCE_POLL_RATE, name)
            write_total = self.metrics.query_sum_or_zero(SOURCE_WRITE_TOTAL, name)
            write_rate = self.metrics.query_sum_or_zero(SOURCE_WRITE_RATE, name)

        if self.sink is not None:
            send_total = self.metrics.query_sum_or_zero(SINK_SEND_TOTAL, self.sink.name)
            send_rate = self.metrics.query_sum_or_zero(SINK_SEND_RATE, self.sink.name)

        # CDC has no separate transformation stage; source writes stand in for it
        return {
            'ingestion': {'total': poll_total, 'rate': per_minute(poll_rate)},
            'transformations': {'total': write_total, 'rate': per_minute(write_rate)},
            'schemaMapper': {'total': write_total, 'rate': per_minute(write_rate)},
            'load': {'total': send_total, 'rate': per_minute(send_rate)},
            'timeRange': time_range,
        }

    # ==========================================
    # Monitoring dashboard
    # ==========================================

    def monitoring(self) -> Dict:
        """
        Raises:
            NoConnectorsError: the pipeline has no source connector
        """
        if self.source is None:
            raise NoConnectorsError('No source connector found')

        name = self.source.name
        status = self._status(self.source) or {}
        is_running = (status.get('connector') or {}).get('state') == 'RUNNING'
        task_states = {str(t.get('id')): t.get('state') for t in status.get('tasks') or []}

        poll_rate = self.metrics.query_sum_or_zero(SOURCE_POLL_RATE, name)
        write_rate = self.metrics.query_sum_or_zero(SOURCE_WRITE_RATE, name)
        error_count = self.metrics.query_sum_or_zero(TASK_ERRORS_LOGGED, name)

        error_rate = error_count / (error_count + 100) * 100 if error_count > 0 else 0.0
        queue_usage = min(100.0, (poll_rate - write_rate) / poll_rate * 100) if poll_rate > 0 else 0.0
        base_lag = estimated_lag_ms(poll_rate, write_rate)

        sink_read_rate = sink_send_rate = 0.0
        if self.sink is not None:
            sink_read_rate = self.metrics.query_sum_or_zero(SINK_READ_RATE, self.sink.name)
            sink_send_rate = self.metrics.query_sum_or_zero(SINK_SEND_RATE, self.sink.name)

        return {
            'state': {
                'status': 'Streaming' if is_running else 'Paused',
                'errorRate': f"{error_rate:.2f}%",
                'commitRate': f"{write_rate:.1f}/s",
                'queueUsage': f"{queue_usage:.0f}%",
            },
            'lagMetrics': [
                {'label': 'P50 Lag', 'value': f"{round_half_up(base_lag * 0.5)}ms"},
                {'label': 'P95 Lag', 'value': f"{round_half_up(base_lag * 1.5)}ms"},
                {'label': 'P99 Lag', 'value': f"{round_half_up(base_lag * 2)}ms"},
                {'label': 'Avg Lag', 'value': f"{round_half_up(base_lag)}ms"},
            ],
            'throughputMetrics': [
                {'label': '1 min', 'value': f"{poll_rate * 60:.0f} rec/min"},
                {'label': '5 min', 'value': f"{poll_rate * 60 * 0.95:.0f} rec/min"},
                {'label': '15 min', 'value': f"{poll_rate * 60 * 0.90:.0f} rec/min"},
            ],
            'connectorTasks': self._task_health(name, task_states),
            'slowTables': [],
            'flowMetrics': {
                'sourceToKafka': format_rate(write_rate),
                'kafkaToSink': format_rate(sink_read_rate),
                'sinkToDestination': format_rate(sink_send_rate),
            },
        }

    def _task_health(self, name: str, task_states: Dict[str, str]) -> List[Dict]:
        write_rates = {t['task']: t['value'] for t in self.metrics.query_per_task(SOURCE_WRITE_RATE, name)}
        tasks = []
        for task in self.metrics.query_per_task(SOURCE_POLL_RATE, name):
            poll_rate = task['value']
            lag = estimated_lag_ms(poll_rate, write_rates.get(task['task'], 0.0))
            state = task_states.get(task['task'], 'UNKNOWN')

            if state != 'RUNNING' or lag > TASK_LAG_ERROR_MS:
                health = 'error'
            elif lag > TASK_LAG_WARNING_MS:
                health = 'warning'
            else:
                health = 'healthy'

            tasks.append({
                'id': f"Task {task['task']}",
                'lag': f"{lag:.0f}ms",
                'status': health,
                'records': f"{poll_rate * 60:.0f}/min",
            })
        return tasks

    # ==========================================
    # Logs
    # ==========================================

    def logs(self, limit: int = DEFAULT_LOG_LIMIT) -> List[Dict]:
        """
        Synthesized log feed: connector and task states, throughput, cluster
        info and the most recent pipeline events.

        Raises:
            NoConnectorsError: the pipeline has no source connector
        """
        if self.source is None:
            raise NoConnectorsError('Pipeline not found')

        entries: List[Dict] = []
        now = self.clock().isoformat()

        def add(severity: str, message: str, worker_id, context: Optional[Dict] = None, timestamp: str = now):
            entry = {
                'id': str(len(entries) + 1),
                'timestamp': timestamp,
                'severity': severity,
                'message': message,
                'workerId': worker_id,
            }
            if context is not None:
                entry['context'] = context
            entries.append(entry)

        # (status, connector label, task state label, task trace label)
        legs = (
            (self._status(self.source), 'Connector', 'Source Task', 'Task'),
            (self._status(self.sink), 'Sink Connector', 'Sink Task', 'Sink Task'),
        )
        for status, connector_label, task_label, task_trace_label in legs:
            if not status:
                continue
            connector_status = status.get('connector')
            if connector_status:
                add(*self._state_entry(connector_status, connector_label, connector_label))
            for task in status.get('tasks') or []:
                task_id = task.get('id')
                add(*self._state_entry(task, f"{task_label} {task_id}", f"{task_trace_label} {task_id}"))

        source_name = self.source.name

        events_seen = self.metrics.query_first(DEBEZIUM_EVENTS_SEEN, source_name)
        if events_seen is not None:
            add('info', f"Total events processed: {events_seen:g}", 'metrics', {'metric': 'TotalNumberOfEventsSeen'})

        config = self.connector_manager.get_connector_config(source_name)
        if config:
            table = config.get('table.include.list')
            add(
                'info',
                f"Connector config: {config.get('database.hostname')}:{config.get('database.port')}/"
                f"{config.get('database.dbname')} - Table: {table or 'all'}",
                'config',
                {'config': {'database': config.get('database.hostname'), 'table': table}},
            )

        topics = self.connector_manager.get_connector_topics(source_name)
        add('info', f"Active Kafka topics: {', '.join(topics) or 'none'}", 'kafka', {'topics': topics})

        source_rate = self.metrics.query_first(SOURCE_POLL_RATE, source_name)
        if source_rate is not None:
            rate = f"{source_rate * 60:.2f}"
            add('info', f"Source throughput: {rate} records/min", 'metrics', {'metric': 'throughput', 'value': rate})

        if self.sink is not None:
            sink_rate = self.metrics.query_first(SINK_SEND_RATE, self.sink.name)
            if sink_rate is not None:
                rate = f"{sink_rate * 60:.2f}"
                add('info', f"Sink throughput: {rate} records/min", 'metrics',
                    {'metric': 'sink_throughput', 'value': rate})

        plugins = [
            p.get('class', '') for p in self.connector_manager.list_connector_plugins()
            if 'debezium' in p.get('class', '').lower()
        ]
        if plugins:
            add('info', f"Debezium connectors available: {len(plugins)}", 'system', {'plugins': plugins})

        cluster = self.connector_manager.get_cluster_info()
        if cluster:
            commit = (cluster.get('commit') or 'unknown')[:7]
            add(
                'info',
                f"Kafka Connect v{cluster.get('version')} (commit: {commit})",
                'system',
                {'version': cluster.get('version'), 'kafkaClusterId': cluster.get('kafka_cluster_id')},
            )

        for event in self.pipeline.events.order_by('-created_at')[:RECENT_EVENT_COUNT]:
            add(
                event_severity(event.event_type),
                event.message,
                'system',
                {'source': 'pipeline_events'},
                timestamp=event.created_at.isoformat(),
            )

        return entries[:limit]

    @staticmethod
    def _state_entry(status: Dict, state_label: str, trace_label: str):
        state = status.get('state')
        trace = status.get('trace')
        message = f"{state_label} state: {state}"
        if trace and state in ('FAILED', 'PAUSED'):
            first_line = trace.split("\n")[0] or trace
            message = f"{trace_label}: {first_line}"
        context = {'trace': trace} if trace else None
        return log_severity(state), message, status.get('worker_id'), context

    # ==========================================
    # State changes
    # ==========================================

    def state_changes(self, limit: int = DEFAULT_STATE_CHANGE_LIMIT) -> List[Dict]:
        """
        Current connector and task states. Transitions are not tracked, so
        every entry reports ``from: UNKNOWN``.

        Raises:
            NoConnectorsError: the pipeline has no connectors
        """
        connectors = list(self.pipeline.connectors.all())
        if not connectors:
            raise NoConnectorsError('Pipeline not found')

        changes: List[Dict] = []
        now = self.clock().isoformat()

        def add(state: Optional[str], worker_id, task: str):
            changes.append({
                'id': str(len(changes) + 1),
                'timestamp': now,
                'from': 'UNKNOWN',
                'to': state,
                'workerId': worker_id,
                'task': task,
            })

        for connector in connectors:
            status = self._status(connector)
            if not status:
                continue
            connector_status = status.get('connector')
            if connector_status:
                add(connector_status.get('state'), connector_status.get('worker_id'), f"{connector.type} connector")
            for task in status.get('tasks') or []:
                add(task.get('state'), task.get('worker_id'), f"Task {task.get('id')}")

        return changes[:limit]
