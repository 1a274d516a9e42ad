"""
Alert endpoints: listing, statistics and operator resolution.
"""

import logging

from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from pipelines.models import AlertEvent, Pipeline
from pipelines.monitoring.alerts import AlertResolutionBlocked, alert_stats, resolve_alert, resolve_all

logger = logging.getLogger(__name__)

PIPELINE_ALERT_LIMIT = 100


def _blocked_response(error: AlertResolutionBlocked) -> JsonResponse:
    return JsonResponse({
        'success': False,
        'error': str(error),
        'pausedConnector': error.paused_connector,
        'requiresAction': True,
    }, status=400)


@require_http_methods(["GET"])
def list_unresolved_alerts(request):
    try:
        alerts = AlertEvent.objects.filter(resolved=False).select_related('pipeline').order_by('-created_at')
        return JsonResponse({'success': True, 'alerts': [a.to_dict() for a in alerts]})
    except Exception as e:
        logger.error(f"Failed to list alerts: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def pipeline_alerts(request, pk):
    """Alerts of one pipeline, newest first. ``?resolved=true|false`` filters."""
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        alerts = AlertEvent.objects.filter(pipeline=pipeline).select_related('pipeline')
        resolved = request.GET.get('resolved')
        if resolved is not None:
            alerts = alerts.filter(resolved=resolved == 'true')
        alerts = alerts.order_by('-created_at')[:PIPELINE_ALERT_LIMIT]
        return JsonResponse({'success': True, 'alerts': [a.to_dict() for a in alerts]})
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to list alerts: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@csrf_exempt
@require_http_methods(["POST"])
def resolve_alert_view(request, alert_id):
    alert = get_object_or_404(AlertEvent.objects.select_related('pipeline'), pk=alert_id)
    try:
        resolve_alert(alert)
        return JsonResponse({'success': True, 'alert': alert.to_dict()})
    except AlertResolutionBlocked as e:
        return _blocked_response(e)
    except Exception as e:
        logger.error(f"Failed to resolve alert {alert_id}: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@csrf_exempt
@require_http_methods(["POST"])
def resolve_all_alerts(request, pk):
    pipeline = get_object_or_404(Pipeline, pk=pk)
    try:
        count = resolve_all(pipeline)
        return JsonResponse({'success': True, 'resolved_count': count})
    except AlertResolutionBlocked as e:
        return _blocked_response(e)
    except Exception as e:
        logger.error(f"[{pipeline.name}] Failed to resolve alerts: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def alert_statistics(request):
    try:
        return JsonResponse({'success': True, 'stats': alert_stats()})
    except Exception as e:
        logger.error(f"Failed to compute alert stats: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)
