"""
CDC pipeline models
- Pipeline: a source/sink connector pair and its lifecycle
- PipelineConnector: one deployed Kafka Connect connector
- PipelineEvent: append-only progress log
- AlertEvent: monitoring alerts
- MonitoringSettings: singleton monitoring thresholds
- RegisteredConnector / ConnectorVersion: versioned connector config registry
"""

from .pipeline import Pipeline, PipelineEvent
from .connector import PipelineConnector, RegisteredConnector, ConnectorVersion
from .alert import AlertEvent
from .monitoring import MonitoringSettings, MonitoringThresholds

__all__ = [
    'Pipeline',
    'PipelineEvent',
    'PipelineConnector',
    'RegisteredConnector',
    'ConnectorVersion',
    'AlertEvent',
    'MonitoringSettings',
    'MonitoringThresholds',
]
