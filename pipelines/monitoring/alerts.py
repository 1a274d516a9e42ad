"""
Alert persistence: deduplicated upsert, operator resolution and statistics.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from pipelines.metrics import alerts_raised_total
from pipelines.models import AlertEvent, Pipeline
from pipelines.orchestration.status import ConnectorStatusAggregator, connector_state

logger = logging.getLogger(__name__)


class AlertResolutionBlocked(Exception):
    """A connector of the pipeline is still paused"""

    def __init__(self, paused_connector: str, plural: bool = False):
        self.paused_connector = paused_connector
        noun = 'alerts' if plural else 'alert'
        issue = 'issues are' if plural else 'issue is'
        super().__init__(
            f'Cannot resolve {noun}: Connector "{paused_connector}" is still in PAUSED state. '
            f'Please resume the connector first to ensure the {issue} truly resolved.'
        )


class AlertStore:
    """Keeps at most one unresolved alert per (pipeline, alert_type, connector_type)"""

    def raise_alert(
        self,
        pipeline: Pipeline,
        alert_type: str,
        severity: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        connector_type: Optional[str] = None
    ) -> Tuple[AlertEvent, bool]:
        """
        Insert a new alert, or refresh the unresolved one with the same key.

        Returns:
            Tuple[AlertEvent, bool]: (alert, created)
        """
        metadata = metadata or {}
        try:
            alert, created = self._upsert(pipeline, alert_type, severity, message, metadata, connector_type)
        except IntegrityError:
            # Another worker inserted the same key between our lookup and insert
            logger.debug(f"[{pipeline.name}] Concurrent insert of {alert_type}, retrying as update")
            alert, created = self._upsert(pipeline, alert_type, severity, message, metadata, connector_type)

        alerts_raised_total.labels(alert_type=alert_type, severity=severity).inc()
        if created:
            logger.warning(f"[{pipeline.name}] {severity.upper()} {alert_type}: {message}")
        else:
            logger.debug(f"[{pipeline.name}] Refreshed {alert_type} alert {alert.id}")
        return alert, created

    @staticmethod
    def _upsert(pipeline, alert_type, severity, message, metadata, connector_type) -> Tuple[AlertEvent, bool]:
        with transaction.atomic():
            existing = (
                AlertEvent.objects
                .select_for_update()
                .filter(
                    pipeline=pipeline,
                    alert_type=alert_type,
                    connector_type=connector_type,
                    resolved=False,
                )
                .first()
            )
            if existing is not None:
                existing.severity = severity
                existing.message = message
                existing.metadata = metadata
                existing.save(update_fields=['severity', 'message', 'metadata', 'updated_at'])
                return existing, False

            alert = AlertEvent.objects.create(
                pipeline=pipeline,
                alert_type=alert_type,
                severity=severity,
                connector_type=connector_type,
                message=message,
                metadata=metadata,
            )
            return alert, True


# ==========================================
# Resolution
# ==========================================

def _ensure_not_paused(pipeline: Pipeline, aggregator: ConnectorStatusAggregator, plural: bool):
    connectors = list(pipeline.connectors.all())
    if not connectors:
        return

    try:
        statuses = aggregator.fetch_many(c.name for c in connectors)
    except Exception as e:
        logger.warning(f"[{pipeline.name}] Could not check connector status before resolving alerts: {e}")
        return

    for connector in sorted(connectors, key=lambda c: 0 if c.type == 'source' else 1):
        status = statuses.get(connector.name)
        if status is None:
            logger.warning(f"[{connector.name}] Status unavailable, resolving without pause check")
            continue
        if connector_state(status) == 'PAUSED':
            raise AlertResolutionBlocked(connector.name, plural=plural)


def resolve_alert(alert: AlertEvent, aggregator: Optional[ConnectorStatusAggregator] = None) -> AlertEvent:
    """
    Mark one alert resolved.

    Raises:
        AlertResolutionBlocked: a connector of the alert's pipeline is PAUSED
    """
    _ensure_not_paused(alert.pipeline, aggregator or ConnectorStatusAggregator(), plural=False)
    alert.resolve()
    logger.info(f"[{alert.pipeline.name}] Alert {alert.id} ({alert.alert_type}) resolved")
    return alert


def resolve_all(pipeline: Pipeline, aggregator: Optional[ConnectorStatusAggregator] = None) -> int:
    """
    Mark every unresolved alert of a pipeline resolved.

    Returns:
        Number of alerts resolved
    """
    _ensure_not_paused(pipeline, aggregator or ConnectorStatusAggregator(), plural=True)
    count = AlertEvent.objects.filter(pipeline=pipeline, resolved=False).update(
        resolved=True, resolved_at=timezone.now(), updated_at=timezone.now()
    )
    logger.info(f"[{pipeline.name}] Resolved {count} alerts")
    return count


def alert_stats() -> Dict[str, int]:
    unresolved = Q(resolved=False)
    return AlertEvent.objects.aggregate(
        unresolved_count=Count('id', filter=unresolved),
        critical_count=Count('id', filter=unresolved & Q(severity='critical')),
        warning_count=Count('id', filter=unresolved & Q(severity='warning')),
        info_count=Count('id', filter=unresolved & Q(severity='info')),
        affected_pipelines=Count('pipeline', filter=unresolved, distinct=True),
    )
