"""
Shared fixtures: a two-connector pipeline and mocked Kafka Connect,
Prometheus and Kafka admin clients. Nothing here talks to a real service.
"""

from datetime import datetime, timezone as dt_timezone
from unittest.mock import MagicMock

import pytest

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from cdcstream.utils.kafka.topic_manager import KafkaTopicManager
from cdcstream.utils.prometheus.metrics_client import PrometheusMetricsClient
from pipelines.models import Pipeline, PipelineConnector
from pipelines.utils.config_normalizer import JDBC_SINK_CONNECTOR, POSTGRES_CONNECTOR

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=dt_timezone.utc)


def postgres_source_config(**overrides):
    config = {
        'connector.class': POSTGRES_CONNECTOR,
        'database.hostname': 'localhost',
        'database.port': '5432',
        'database.user': 'cdc',
        'database.password': 'secret',
        'database.dbname': 'shop',
        'database.server.name': 'orders',
        'topic.prefix': 'orders',
        'slot.name': 'orders-slot',
        'table.include.list': 'public.items',
    }
    config.update(overrides)
    return config


def jdbc_sink_config(**overrides):
    config = {
        'connector.class': JDBC_SINK_CONNECTOR,
        'connection.url': 'jdbc:postgresql://localhost:5432/warehouse',
        'connection.user': 'warehouse',
        'connection.password': 'pw',
        'topics.regex': 'orders\\..*',
    }
    config.update(overrides)
    return config


def connector_status(state, tasks=(), trace=None, worker_id='connect:8083'):
    """Kafka Connect ``/status`` body with ``tasks`` given as state strings."""
    connector = {'state': state, 'worker_id': worker_id}
    if trace:
        connector['trace'] = trace
    return {
        'connector': connector,
        'tasks': [{'id': i, 'state': s, 'worker_id': worker_id} for i, s in enumerate(tasks)],
    }


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def pipeline(db):
    """Ready pipeline with a Postgres source and a JDBC sink"""
    pipeline = Pipeline.objects.create(name='orders', status='ready')
    PipelineConnector.objects.create(
        pipeline=pipeline,
        name='orders-source',
        type='source',
        connector_class=POSTGRES_CONNECTOR,
        config=postgres_source_config(),
    )
    PipelineConnector.objects.create(
        pipeline=pipeline,
        name='orders-sink',
        type='sink',
        connector_class=JDBC_SINK_CONNECTOR,
        config=jdbc_sink_config(),
    )
    return pipeline


@pytest.fixture
def running_pipeline(pipeline):
    pipeline.update_status('running')
    return pipeline


@pytest.fixture
def connector_manager():
    """KafkaConnectManager double where every write succeeds"""
    manager = MagicMock(spec=KafkaConnectManager)
    manager.kafka_connect_url = 'http://connect:8083'
    manager.status_timeout = 3
    manager.deploy_connector.return_value = (True, 'created', None)
    manager.create_connector.return_value = (True, None)
    manager.delete_connector.return_value = (True, None)
    manager.delete_connector_offsets.return_value = (True, None)
    manager.connector_exists.return_value = (False, None)
    manager.pause_connector.return_value = (True, None)
    manager.resume_connector.return_value = (True, None)
    manager.restart_connector.return_value = (True, None)
    manager.get_connector_status.return_value = (False, None)
    manager.get_connector_config.return_value = None
    manager.get_connector_topics.return_value = []
    manager.list_connector_plugins.return_value = []
    manager.get_cluster_info.return_value = None
    return manager


@pytest.fixture
def topic_manager():
    manager = MagicMock(spec=KafkaTopicManager)
    manager.find_topics_for_prefix.return_value = ['orders.public.items']
    manager.set_compaction.return_value = {'orders.public.items': None}
    manager.delete_topics_matching.return_value = (['orders.public.items'], [])
    return manager


@pytest.fixture
def metrics_client():
    """Prometheus double with no data for any series"""
    client = MagicMock(spec=PrometheusMetricsClient)
    client.query_first.return_value = None
    client.query_sum.return_value = None
    client.query_sum_or_zero.return_value = 0.0
    client.query_per_task.return_value = []
    return client
