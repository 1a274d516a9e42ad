"""
Connector models
- PipelineConnector: a Kafka Connect connector that belongs to a pipeline
- RegisteredConnector / ConnectorVersion: externally versioned connector configs
"""

from django.db import models
from django.utils import timezone

from .pipeline import Pipeline


class PipelineConnector(models.Model):
    """One source or sink connector; at most one of each type per pipeline"""

    TYPE_CHOICES = [
        ('source', 'Source'),
        ('sink', 'Sink'),
    ]

    pipeline = models.ForeignKey(Pipeline, on_delete=models.CASCADE, related_name='connectors')
    name = models.CharField(max_length=255, help_text="Connector name in Kafka Connect")
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    connector_class = models.CharField(max_length=255, blank=True, default='')

    # Stored config before the first deploy, last deployed flat config afterwards
    config = models.JSONField(default=dict, blank=True)

    # Staged edit awaiting deploy-pending
    pending_config = models.JSONField(null=True, blank=True)
    has_pending_changes = models.BooleanField(default=False)

    last_deployed_version = models.IntegerField(
        null=True,
        blank=True,
        help_text="ConnectorVersion.version the deployed config came from"
    )
    last_deployed_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=20, default='pending')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'pipeline_connectors'
        constraints = [
            models.UniqueConstraint(fields=['pipeline', 'type'], name='unique_connector_type_per_pipeline'),
        ]

    def __str__(self):
        return f"{self.name} ({self.type})"

    @property
    def is_source(self) -> bool:
        return self.type == 'source'


class RegisteredConnector(models.Model):
    """A named connector definition whose config is versioned outside the pipeline"""

    name = models.CharField(max_length=255, unique=True)
    connector_class = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'connector_registry'

    def __str__(self):
        return self.name

    def latest_active_version(self):
        return self.versions.filter(is_active=True).order_by('-version').first()


class ConnectorVersion(models.Model):
    registered_connector = models.ForeignKey(
        RegisteredConnector,
        on_delete=models.CASCADE,
        related_name='versions'
    )
    version = models.PositiveIntegerField()
    config = models.JSONField(default=dict)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'connector_versions'
        ordering = ['-version']
        constraints = [
            models.UniqueConstraint(fields=['registered_connector', 'version'], name='unique_connector_version'),
        ]

    def __str__(self):
        return f"{self.registered_connector.name} v{self.version}"
