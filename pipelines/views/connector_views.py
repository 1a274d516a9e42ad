"""
Per-connector endpoints: lifecycle actions passed through to Kafka Connect,
and deploying a connector's staged config.
"""

import logging

from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from cdcstream.utils.connect.connector_manager import (
    ConnectorDeploymentException,
    KafkaConnectManager,
    http_status_from_error,
)
from pipelines.models import PipelineConnector
from pipelines.orchestration.deployer import PendingConfigError, deploy_pending_config

logger = logging.getLogger(__name__)

# action -> (manager method, past tense for the response message)
CONNECTOR_ACTIONS = {
    'pause': ('pause_connector', 'paused'),
    'resume': ('resume_connector', 'resumed'),
    'restart': ('restart_connector', 'restarted'),
    'delete': ('delete_connector', 'deleted'),
}


def _connector_action(connector_name: str, action: str):
    method_name, done = CONNECTOR_ACTIONS[action]
    try:
        manager = KafkaConnectManager()
        success, error = getattr(manager, method_name)(connector_name)
    except Exception as e:
        logger.error(f"[{connector_name}] Error running {action}: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)

    if success:
        return JsonResponse({'success': True, 'message': f"Connector {connector_name} {done}"})
    return JsonResponse(
        {'success': False, 'error': f"Kafka Connect error: {error}"},
        status=http_status_from_error(error),
    )


@csrf_exempt
@require_http_methods(["POST"])
def pause_connector(request, connector_name):
    return _connector_action(connector_name, 'pause')


@csrf_exempt
@require_http_methods(["POST"])
def resume_connector(request, connector_name):
    return _connector_action(connector_name, 'resume')


@csrf_exempt
@require_http_methods(["POST"])
def restart_connector(request, connector_name):
    return _connector_action(connector_name, 'restart')


@csrf_exempt
@require_http_methods(["DELETE"])
def delete_connector(request, connector_name):
    return _connector_action(connector_name, 'delete')


@csrf_exempt
@require_http_methods(["POST"])
def deploy_pending(request, connector_id):
    """Push a connector's staged config, restoring masked secrets first."""
    connector = get_object_or_404(PipelineConnector, pk=connector_id)
    logger.info(f"[{connector.name}] Deploying pending connector config")
    try:
        return JsonResponse(deploy_pending_config(connector))
    except PendingConfigError as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=400)
    except ConnectorDeploymentException as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=500)
    except Exception as e:
        logger.error(f"[{connector.name}] Failed to deploy pending config: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)
