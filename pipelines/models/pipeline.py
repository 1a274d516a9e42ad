"""
Pipeline models
- Pipeline: lifecycle of a source/sink connector pair
- PipelineEvent: append-only log of progress stages and notable actions
"""

from datetime import timedelta

from django.db import models
from django.utils import timezone


class Pipeline(models.Model):
    """A CDC pipeline: one source connector feeding one sink connector"""

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('ready', 'Ready'),
        ('running', 'Running'),
        ('paused', 'Paused'),
        ('seeding', 'Seeding'),
        ('incremental', 'Incremental'),
        ('idle', 'Idle'),
        ('error', 'Error'),
        ('deleted', 'Deleted'),
    ]

    MONITORED_STATUSES = ('running', 'paused')

    name = models.CharField(max_length=255, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')

    restore_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of times this pipeline was restored; source identifiers get an _r{N} suffix"
    )

    # Soft delete
    deleted_at = models.DateTimeField(null=True, blank=True)
    backup_retention_hours = models.PositiveIntegerField(
        default=24,
        help_text="Hours a soft-deleted pipeline is kept for restore before it is purged"
    )

    # Replication slot WAL monitoring (Postgres sources)
    enable_log_monitoring = models.BooleanField(default=False)
    max_wal_size = models.PositiveIntegerField(default=1024, help_text="Maximum retained WAL in MB")
    alert_threshold = models.PositiveIntegerField(
        default=80,
        help_text="Percentage of max_wal_size at which a WAL_SIZE_EXCEEDED alert is raised"
    )
    wal_check_interval_seconds = models.PositiveIntegerField(default=60)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'pipelines'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} ({self.status})"

    @property
    def source_connector(self):
        return self.connectors.filter(type='source').first()

    @property
    def sink_connector(self):
        return self.connectors.filter(type='sink').first()

    @property
    def wal_alert_threshold_mb(self) -> float:
        return self.max_wal_size * self.alert_threshold / 100

    @property
    def retention_expires_at(self):
        if not self.deleted_at:
            return None
        return self.deleted_at + timedelta(hours=self.backup_retention_hours)

    def update_status(self, status: str):
        self.status = status
        self.save(update_fields=['status', 'updated_at'])

    def soft_delete(self):
        self.status = 'deleted'
        self.deleted_at = timezone.now()
        self.save(update_fields=['status', 'deleted_at', 'updated_at'])

    def mark_restored(self):
        self.restore_count += 1
        self.deleted_at = None
        self.save(update_fields=['restore_count', 'deleted_at', 'updated_at'])


class PipelineEvent(models.Model):
    """Progress and activity log entries for a pipeline"""

    EVENT_TYPE_CHOICES = [
        ('source_connected', 'Source Connected'),
        ('ingesting_started', 'Ingesting Started'),
        ('staging_events', 'Staging Events'),
        ('loading_started', 'Loading Started'),
        ('info', 'Info'),
        ('warning', 'Warning'),
        ('error', 'Error'),
    ]

    STATUS_CHOICES = [
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('info', 'Info'),
    ]

    pipeline = models.ForeignKey(Pipeline, on_delete=models.CASCADE, related_name='events')
    event_type = models.CharField(max_length=32, choices=EVENT_TYPE_CHOICES)
    event_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default='info')
    message = models.TextField(blank=True, default='')
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'pipeline_events'
        ordering = ['-created_at']
        indexes = [models.Index(fields=['pipeline', '-created_at'], name='pipeline_ev_pipelin_6b1f0e_idx')]

    def __str__(self):
        return f"{self.pipeline_id}:{self.event_type}:{self.event_status}"
