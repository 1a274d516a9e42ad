"""
Connector status aggregation and derived pipeline progress.

Status for each connector of a pipeline is fetched concurrently; every fetch
has its own timeout so one unreachable connector never delays or fails the
others. Progress is recomputed from live status on each call, never cached.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Dict, Iterable, List, Optional

from django.utils import timezone

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from pipelines.models import Pipeline, PipelineConnector, PipelineEvent

logger = logging.getLogger(__name__)

PROGRESS_STAGES = ('source_connected', 'ingesting_started', 'staging_events', 'loading_started')


def connector_state(status: Optional[Dict]) -> Optional[str]:
    if not status:
        return None
    return status.get('connector', {}).get('state')


def task_counts(status: Optional[Dict]) -> Dict[str, int]:
    tasks = (status or {}).get('tasks') or []
    return {
        'running_tasks': sum(1 for t in tasks if t.get('state') == 'RUNNING'),
        'total_tasks': len(tasks),
    }


class ConnectorStatusAggregator:
    """Parallel, timeout-bounded connector status fetches"""

    def __init__(self, connector_manager: Optional[KafkaConnectManager] = None, timeout: Optional[float] = None):
        self.connector_manager = connector_manager or KafkaConnectManager()
        self.timeout = timeout or self.connector_manager.status_timeout

    def _fetch_one(self, name: str) -> Optional[Dict]:
        exists, status = self.connector_manager.get_connector_status(name, timeout=self.timeout)
        return status if exists else None

    def fetch_many(self, names: Iterable[str]) -> Dict[str, Optional[Dict]]:
        """
        Fetch status for several connectors at once.

        Returns:
            Dict mapping connector name to its status, or None when it could
            not be fetched within the timeout.
        """
        names = list(dict.fromkeys(names))
        if not names:
            return {}

        results: Dict[str, Optional[Dict]] = {}
        # Guard slightly above the HTTP timeout so requests can fail cleanly first
        guard = self.timeout + 1
        executor = ThreadPoolExecutor(max_workers=len(names), thread_name_prefix='connector-status')
        try:
            futures = {name: executor.submit(self._fetch_one, name) for name in names}
            for name, future in futures.items():
                try:
                    results[name] = future.result(timeout=guard)
                except FutureTimeoutError:
                    logger.warning(f"[{name}] Status fetch timed out after {guard}s")
                    results[name] = None
                except Exception as e:
                    logger.warning(f"[{name}] Failed to fetch connector status: {e}")
                    results[name] = None
        finally:
            executor.shutdown(wait=False)
        return results

    def fetch_statuses(self, connectors: Iterable[PipelineConnector]) -> Dict[str, Optional[Dict]]:
        """Return ``{'source': status|None, 'sink': status|None}``."""
        connectors = list(connectors)
        fetched = self.fetch_many(c.name for c in connectors)
        statuses: Dict[str, Optional[Dict]] = {'source': None, 'sink': None}
        for connector in connectors:
            statuses[connector.type] = fetched.get(connector.name)
        return statuses

    def get_status(self, pipeline: Pipeline) -> Dict[str, Optional[Dict]]:
        return self.fetch_statuses(pipeline.connectors.all())

    def get_all_statuses(self) -> Dict[int, Dict[str, Optional[Dict]]]:
        """Status map for every pipeline that has connectors, keyed by pipeline id."""
        connectors = list(PipelineConnector.objects.all())
        fetched = self.fetch_many(c.name for c in connectors)
        statuses: Dict[int, Dict[str, Optional[Dict]]] = {}
        for connector in connectors:
            status = fetched.get(connector.name)
            if status is None:
                continue
            statuses.setdefault(connector.pipeline_id, {'source': None, 'sink': None})[connector.type] = status
        return statuses

    def get_progress(self, pipeline: Pipeline, record: bool = False) -> Dict[str, Dict]:
        """
        Derive progress stages from live connector status.

        Args:
            pipeline: Pipeline to inspect
            record: Append newly completed stages to the pipeline's event log
        """
        connectors = list(pipeline.connectors.all())
        if not connectors:
            return {}

        statuses = self.fetch_statuses(connectors)
        progress = build_progress(statuses['source'], statuses['sink'])

        if record:
            record_progress_events(pipeline, progress)
        return progress


def _stage(event_type: str, event_status: str, occurred_at: str, metadata: Optional[Dict] = None) -> Dict:
    stage = {
        'event_type': event_type,
        'event_status': event_status,
        'occurred_at': occurred_at,
    }
    if metadata is not None:
        stage['metadata'] = metadata
    return stage


def build_progress(source_status: Optional[Dict], sink_status: Optional[Dict], now=None) -> Dict[str, Dict]:
    """
    Four ordered stages:

    - source_connected: completed when the source is RUNNING, failed otherwise
    - ingesting_started: source RUNNING
    - staging_events, loading_started: source and sink both RUNNING

    A connector whose status is unavailable contributes no stages.
    """
    occurred_at = (now or timezone.now()).isoformat()
    progress: Dict[str, Dict] = {}

    if source_status is None:
        return progress

    source_state = connector_state(source_status)
    source_running = source_state == 'RUNNING'
    progress['source_connected'] = _stage(
        'source_connected',
        'completed' if source_running else 'failed',
        occurred_at,
        {'connector_state': source_state, **task_counts(source_status)},
    )

    if not source_running:
        return progress

    progress['ingesting_started'] = _stage(
        'ingesting_started', 'completed', occurred_at, {'connector_state': source_state}
    )

    sink_state = connector_state(sink_status)
    if sink_state == 'RUNNING':
        progress['staging_events'] = _stage('staging_events', 'completed', occurred_at)
        progress['loading_started'] = _stage(
            'loading_started',
            'completed',
            occurred_at,
            {'connector_state': sink_state, **task_counts(sink_status)},
        )

    return progress


def record_progress_events(pipeline: Pipeline, progress: Dict[str, Dict]) -> List[PipelineEvent]:
    """Append completed stages that have no completed event yet."""
    already = set(
        pipeline.events
        .filter(event_type__in=PROGRESS_STAGES, event_status='completed')
        .values_list('event_type', flat=True)
    )
    created = []
    for stage_name in PROGRESS_STAGES:
        stage = progress.get(stage_name)
        if not stage or stage['event_status'] != 'completed' or stage_name in already:
            continue
        created.append(PipelineEvent.objects.create(
            pipeline=pipeline,
            event_type=stage_name,
            event_status='completed',
            metadata=stage.get('metadata', {}),
        ))
    return created
