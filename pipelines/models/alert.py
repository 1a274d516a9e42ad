"""
AlertEvent: health alerts raised by the monitoring engine
"""

from django.db import models
from django.db.models import Q
from django.utils import timezone

from .pipeline import Pipeline


class AlertEvent(models.Model):
    """
    A monitoring alert.

    Repeated detections refresh the single unresolved row for a
    (pipeline, alert_type, connector_type) key instead of inserting new rows.
    Alerts are only resolved by an explicit operator action.
    """

    ALERT_TYPE_CHOICES = [
        ('CONNECTOR_FAILED', 'Connector Failed'),
        ('CONNECTOR_PAUSED', 'Connector Paused'),
        ('TASK_FAILED', 'Task Failed'),
        ('HIGH_LAG', 'High Lag'),
        ('THROUGHPUT_DROP', 'Throughput Drop'),
        ('HIGH_ERROR_RATE', 'High Error Rate'),
    ]

    SEVERITY_CHOICES = [
        ('critical', 'Critical'),
        ('warning', 'Warning'),
        ('info', 'Info'),
    ]

    pipeline = models.ForeignKey(Pipeline, on_delete=models.CASCADE, related_name='alerts')
    alert_type = models.CharField(max_length=32, choices=ALERT_TYPE_CHOICES)
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, default='warning')
    connector_type = models.CharField(max_length=10, null=True, blank=True)
    message = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)

    resolved = models.BooleanField(default=False)
    resolved_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'alert_events'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['pipeline', 'alert_type', 'connector_type'],
                condition=Q(resolved=False),
                name='unique_unresolved_alert',
            ),
        ]
        indexes = [models.Index(fields=['pipeline', 'resolved'], name='alert_event_pipelin_3c9d2a_idx')]

    def __str__(self):
        return f"[{self.severity}] {self.alert_type} pipeline={self.pipeline_id}"

    def resolve(self):
        self.resolved = True
        self.resolved_at = timezone.now()
        self.save(update_fields=['resolved', 'resolved_at', 'updated_at'])

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'pipeline_id': self.pipeline_id,
            'pipeline_name': self.pipeline.name,
            'alert_type': self.alert_type,
            'severity': self.severity,
            'connector_type': self.connector_type,
            'message': self.message,
            'metadata': self.metadata,
            'resolved': self.resolved,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
