"""
Pipeline endpoints.

Handles:
- Deploy, start, pause and restore of a pipeline's connector pair
- Connector teardown (optionally with topics and replication slot)
- Live status, progress and dashboard reports
- Replication slot WAL size of Postgres sources
"""

import logging

from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from pipelines.models import Pipeline
from pipelines.monitoring.reports import (
    DEFAULT_LOG_LIMIT,
    DEFAULT_STATE_CHANGE_LIMIT,
    NoConnectorsError,
    PipelineReports,
)
from pipelines.monitoring.wal import postgres_source_config, read_slot_wal, slot_name_for
from pipelines.orchestration.deployer import DeploymentValidationError, PipelineDeployer
from pipelines.orchestration.lifecycle import set_pipeline_running, teardown_pipeline_connectors
from pipelines.orchestration.restore import NothingToRestore, PipelineRestorer
from pipelines.orchestration.status import ConnectorStatusAggregator

logger = logging.getLogger(__name__)


def _parse_limit(request, default: int) -> int:
    try:
        limit = int(request.GET.get('limit', default))
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


# ==========================================
# Lifecycle
# ==========================================

@csrf_exempt
@require_http_methods(["POST"])
def deploy_pipeline(request, pk):
    """Deploy source then sink; the source is removed again if the sink fails."""
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        result = PipelineDeployer(pipeline).deploy()
    except DeploymentValidationError as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=422)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Critical deployment error: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)

    payload = result.to_dict()
    if result.success:
        return JsonResponse(payload)
    payload['error'] = 'Deployment failure'
    return JsonResponse(payload, status=500)


def _set_running(request, pk, running: bool):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        errors = set_pipeline_running(pipeline, running)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to {'start' if running else 'pause'} pipeline: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)

    payload = {'success': True}
    if errors:
        payload['errors'] = errors
    return JsonResponse(payload)


@csrf_exempt
@require_http_methods(["POST"])
def start_pipeline(request, pk):
    return _set_running(request, pk, running=True)


@csrf_exempt
@require_http_methods(["POST"])
def pause_pipeline(request, pk):
    return _set_running(request, pk, running=False)


@csrf_exempt
@require_http_methods(["DELETE"])
def delete_pipeline_connectors(request, pk):
    """
    Remove the pipeline's connectors from Kafka Connect, keeping their rows
    for restore. ``?deleteTopics=true`` also drops topics and the Postgres
    replication slot.
    """
    pipeline = get_object_or_404(Pipeline, pk=pk)
    delete_topics = request.GET.get('deleteTopics') == 'true'
    try:
        result = teardown_pipeline_connectors(pipeline, delete_topics=delete_topics)
        return JsonResponse(result.to_dict())
    except Exception as e:
        logger.error(f"[{pipeline.name}] Error in connector deletion: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@csrf_exempt
@require_http_methods(["POST"])
def restore_pipeline(request, pk):
    """Re-create the connectors of a soft-deleted pipeline."""
    pipeline = get_object_or_404(Pipeline, pk=pk)
    if pipeline.deleted_at is None:
        return JsonResponse({'success': False, 'error': 'Pipeline is not deleted'}, status=409)
    try:
        result = PipelineRestorer(pipeline).restore()
    except NothingToRestore as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=404)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Restore failed: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)

    return JsonResponse(result.to_dict(), status=200 if result.success else 500)


# ==========================================
# Status
# ==========================================

@require_http_methods(["GET"])
def pipeline_status(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        status = ConnectorStatusAggregator().get_status(pipeline)
        return JsonResponse({'success': True, 'status': status})
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to fetch status: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def pipeline_progress(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    if not pipeline.connectors.exists():
        return JsonResponse({'success': False, 'error': 'No connectors found for this pipeline'}, status=404)
    try:
        record = request.GET.get('record') == 'true'
        progress = ConnectorStatusAggregator().get_progress(pipeline, record=record)
        return JsonResponse({'success': True, 'progress': progress})
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to compute progress: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def all_connector_statuses(request):
    try:
        statuses = ConnectorStatusAggregator().get_all_statuses()
        return JsonResponse({'success': True, 'statuses': {str(k): v for k, v in statuses.items()}})
    except Exception as e:
        logger.error(f"Failed to fetch connector statuses: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


# ==========================================
# Reports
# ==========================================

@require_http_methods(["GET"])
def pipeline_activity(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        activity = PipelineReports(pipeline).activity(request.GET.get('timeRange', '24h'))
        return JsonResponse({'success': True, 'activity': activity})
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to build activity: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def pipeline_monitoring(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        monitoring = PipelineReports(pipeline).monitoring()
        return JsonResponse({'success': True, 'monitoring': monitoring})
    except NoConnectorsError as e:
        return JsonResponse({'success': False, 'error': str(e)})
    except Exception as e:
        logger.error(f"[{pipeline.name}] Error fetching monitoring data: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def pipeline_logs(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        logs = PipelineReports(pipeline).logs(limit=_parse_limit(request, DEFAULT_LOG_LIMIT))
        return JsonResponse({'success': True, 'logs': logs})
    except NoConnectorsError as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=404)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Error fetching pipeline logs: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def pipeline_state_changes(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        changes = PipelineReports(pipeline).state_changes(limit=_parse_limit(request, DEFAULT_STATE_CHANGE_LIMIT))
        return JsonResponse({'success': True, 'stateChanges': changes})
    except NoConnectorsError as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=404)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Error fetching state changes: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def pipeline_wal_size(request, pk):
    """Retained WAL of the source's replication slot plus the pg_wal directory size."""
    pipeline = get_object_or_404(Pipeline, pk=pk)
    source = pipeline.source_connector
    if source is None:
        return JsonResponse({'success': False, 'error': 'Source connector not found'}, status=404)

    config = postgres_source_config(source)
    if config is None:
        return JsonResponse({
            'success': True,
            'data': None,
            'message': 'WAL monitoring only available for PostgreSQL sources',
        })

    slot_name = slot_name_for(config, pipeline.name)
    try:
        wal = read_slot_wal(config, slot_name, include_wal_dir=True)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to get WAL size: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e) or 'Failed to get WAL size'}, status=500)

    if wal is None:
        return JsonResponse({'success': True, 'data': None, 'message': f'No replication slot found: {slot_name}'})

    return JsonResponse({
        'success': True,
        'data': {
            'wal_size_mb': wal.wal_size_mb,
            'max_wal_size_mb': pipeline.max_wal_size,
            'alert_threshold_percent': pipeline.alert_threshold,
            'replication_slot': wal.slot_dict(),
            'physical_wal': wal.physical_wal,
        },
    })
