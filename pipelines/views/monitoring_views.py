"""
Monitoring threshold settings and service health.
"""

import json
import logging
from dataclasses import fields

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from pipelines.models import MonitoringSettings, MonitoringThresholds

logger = logging.getLogger(__name__)

THRESHOLD_FIELDS = tuple(f.name for f in fields(MonitoringThresholds))

# Stored in integer columns
INTEGER_FIELDS = ('dlq_count', 'check_interval_ms')


def validate_thresholds(data) -> dict:
    """
    Keep the known threshold keys of a request body.

    Raises:
        ValueError: a value is not a non-negative number, an integer
            field is fractional, or the check interval is below 1ms
    """
    if not isinstance(data, dict):
        raise ValueError('Request body must be a JSON object')

    values = {}
    for name in THRESHOLD_FIELDS:
        if name not in data:
            continue
        value = data[name]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"{name} must be a non-negative number")
        if name in INTEGER_FIELDS and not isinstance(value, int):
            raise ValueError(f"{name} must be an integer")
        values[name] = value

    if 'check_interval_ms' in values and values['check_interval_ms'] < 1:
        raise ValueError('check_interval_ms must be at least 1')
    return values


@csrf_exempt
@require_http_methods(["GET", "PUT"])
def thresholds(request):
    if request.method == 'GET':
        try:
            return JsonResponse({'success': True, 'thresholds': MonitoringSettings.load_thresholds().to_dict()})
        except Exception as e:
            logger.error(f"Failed to load thresholds: {e}", exc_info=True)
            return JsonResponse({'success': False, 'error': str(e)}, status=500)

    try:
        values = validate_thresholds(json.loads(request.body or b'{}'))
    except (json.JSONDecodeError, ValueError) as e:
        return JsonResponse({'success': False, 'error': str(e)}, status=400)

    try:
        row = MonitoringSettings.store(values)
        logger.info(f"Monitoring thresholds updated: {values}")
        return JsonResponse({
            'success': True,
            'message': 'Thresholds updated successfully',
            'thresholds': row.as_thresholds().to_dict(),
        })
    except Exception as e:
        logger.error(f"Failed to update thresholds: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET"])
def health(request):
    manager = KafkaConnectManager()
    reachable, error = manager.check_kafka_connect_health()
    payload = {
        'status': 'ok',
        'kafkaConnect': manager.kafka_connect_url,
        'kafkaConnectReachable': reachable,
    }
    if error:
        payload['kafkaConnectError'] = error
    return JsonResponse(payload)
