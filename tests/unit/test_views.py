"""
API tests through the Django test client.

External clients are patched where each view module imports them.
"""

import json
from unittest.mock import patch

import pytest
from django.urls import reverse

from pipelines.models import AlertEvent, MonitoringSettings, Pipeline
from pipelines.monitoring.alerts import AlertStore
from pipelines.monitoring.wal import SlotWal
from pipelines.orchestration.lifecycle import TeardownResult
from tests.conftest import connector_status

pytestmark = pytest.mark.django_db


def put_json(client, url, body):
    return client.put(url, data=json.dumps(body) if not isinstance(body, str) else body,
                      content_type='application/json')


class TestThresholds:
    """GET/PUT /api/monitoring/thresholds"""

    url = '/api/monitoring/thresholds'

    def test_defaults(self, client):
        response = client.get(self.url)

        assert response.status_code == 200
        assert response.json() == {
            'success': True,
            'thresholds': {
                'lag_ms': 5000,
                'throughput_drop_percent': 50,
                'error_rate_percent': 1,
                'dlq_count': 0,
                'check_interval_ms': 60000,
                'pause_duration_seconds': 5,
            },
        }

    def test_partial_update(self, client):
        response = put_json(client, self.url, {'lag_ms': 8000, 'unknown': 1})

        assert response.status_code == 200
        body = response.json()
        assert body['message'] == 'Thresholds updated successfully'
        assert body['thresholds']['lag_ms'] == 8000
        assert body['thresholds']['pause_duration_seconds'] == 5
        assert MonitoringSettings.objects.count() == 1

        assert client.get(self.url).json()['thresholds']['lag_ms'] == 8000

    def test_response_reflects_stored_row(self, client):
        response = put_json(client, self.url, {'check_interval_ms': 30000, 'dlq_count': 3})

        thresholds = response.json()['thresholds']
        assert thresholds['check_interval_ms'] == 30000
        assert thresholds['dlq_count'] == 3
        assert MonitoringSettings.load_thresholds().to_dict() == thresholds

    @pytest.mark.parametrize('body', [
        {'lag_ms': -1},
        {'lag_ms': 'fast'},
        {'pause_duration_seconds': True},
        {'check_interval_ms': 0},
        {'check_interval_ms': 0.5},
        {'dlq_count': 2.7},
        [1, 2],
        'not json',
    ])
    def test_invalid_update(self, client, body):
        response = put_json(client, self.url, body)

        assert response.status_code == 400
        assert response.json()['success'] is False
        assert MonitoringSettings.objects.count() == 0

    def test_method_not_allowed(self, client):
        assert client.post(self.url).status_code == 405


class TestPipelineLifecycle:
    """Deploy, start/pause, teardown and restore endpoints."""

    def test_deploy_draft_is_422(self, client, pipeline):
        pipeline.update_status('draft')

        response = client.post(reverse('pipelines:deploy_pipeline', args=[pipeline.pk]))

        assert response.status_code == 422
        assert 'draft' in response.json()['error']

    def test_deploy_unknown_pipeline_is_404(self, client, db):
        assert client.post('/api/pipelines/9999/deploy').status_code == 404

    def test_deploy_requires_post(self, client, pipeline):
        assert client.get(f'/api/pipelines/{pipeline.pk}/deploy').status_code == 405

    def test_deploy_success(self, client, settings, pipeline, connector_manager, topic_manager):
        settings.DEBEZIUM_CONFIG = dict(settings.DEBEZIUM_CONFIG, TOPIC_DISCOVERY={'INITIAL_DELAY': 0})

        with patch('pipelines.orchestration.deployer.KafkaConnectManager', return_value=connector_manager), \
                patch('pipelines.orchestration.deployer.KafkaTopicManager', return_value=topic_manager):
            response = client.post(f'/api/pipelines/{pipeline.pk}/deploy')

        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['results']['source']['action'] == 'created'

    def test_deploy_failure_is_500(self, client, pipeline, connector_manager, topic_manager):
        connector_manager.deploy_connector.return_value = (False, 'created', 'HTTP 400: bad config')

        with patch('pipelines.orchestration.deployer.KafkaConnectManager', return_value=connector_manager):
            response = client.post(f'/api/pipelines/{pipeline.pk}/deploy')

        assert response.status_code == 500
        assert response.json()['error'] == 'Deployment failure'

    def test_pause(self, client, running_pipeline, connector_manager):
        with patch('pipelines.orchestration.lifecycle.KafkaConnectManager', return_value=connector_manager):
            response = client.post(f'/api/pipelines/{running_pipeline.pk}/pause')

        assert response.json() == {'success': True}
        running_pipeline.refresh_from_db()
        assert running_pipeline.status == 'paused'

    def test_delete_connectors_with_topics(self, client, pipeline):
        result = TeardownResult(deleted_connectors=['orders-source', 'orders-sink'], deleted_topics=['orders.x'])

        with patch('pipelines.views.pipeline_views.teardown_pipeline_connectors', return_value=result) as teardown:
            response = client.delete(f'/api/pipelines/{pipeline.pk}/connectors?deleteTopics=true')

        assert response.status_code == 200
        assert response.json()['deletedTopics'] == ['orders.x']
        assert teardown.call_args[1] == {'delete_topics': True}

    def test_restore_without_connectors_is_404(self, client, db):
        empty = Pipeline.objects.create(name='empty', status='ready')
        empty.soft_delete()

        response = client.post(f'/api/pipelines/{empty.pk}/restore')

        assert response.status_code == 404

    def test_restore_live_pipeline_is_409(self, client, pipeline):
        with patch('pipelines.views.pipeline_views.PipelineRestorer') as restorer:
            response = client.post(f'/api/pipelines/{pipeline.pk}/restore')

        assert response.status_code == 409
        assert response.json() == {'success': False, 'error': 'Pipeline is not deleted'}
        restorer.assert_not_called()


class TestPipelineReads:
    """Status, progress and report endpoints."""

    def test_status(self, client, pipeline, connector_manager):
        connector_manager.get_connector_status.return_value = (True, connector_status('RUNNING'))

        with patch('pipelines.orchestration.status.KafkaConnectManager', return_value=connector_manager):
            response = client.get(f'/api/pipelines/{pipeline.pk}/status')

        assert response.status_code == 200
        assert response.json()['status']['source']['connector']['state'] == 'RUNNING'

    def test_progress_records_events(self, client, pipeline, connector_manager):
        connector_manager.get_connector_status.return_value = (True, connector_status('RUNNING', ['RUNNING']))

        with patch('pipelines.orchestration.status.KafkaConnectManager', return_value=connector_manager):
            response = client.get(f'/api/pipelines/{pipeline.pk}/progress?record=true')

        assert response.status_code == 200
        assert set(response.json()['progress']) == {
            'source_connected', 'ingesting_started', 'staging_events', 'loading_started',
        }
        assert pipeline.events.count() == 4

    def test_all_statuses(self, client, pipeline, connector_manager):
        connector_manager.get_connector_status.return_value = (True, connector_status('RUNNING'))

        with patch('pipelines.orchestration.status.KafkaConnectManager', return_value=connector_manager):
            response = client.get('/api/pipelines/connectors/statuses')

        assert list(response.json()['statuses']) == [str(pipeline.pk)]

    def test_logs_without_connectors_is_404(self, client, db):
        empty = Pipeline.objects.create(name='empty', status='ready')

        response = client.get(f'/api/pipelines/{empty.pk}/logs')

        assert response.status_code == 404
        assert response.json() == {'success': False, 'error': 'Pipeline not found'}

    def test_monitoring_without_source_is_soft_failure(self, client, db):
        empty = Pipeline.objects.create(name='empty', status='ready')

        response = client.get(f'/api/pipelines/{empty.pk}/monitoring')

        assert response.status_code == 200
        assert response.json() == {'success': False, 'error': 'No source connector found'}

    def test_wal_size(self, client, pipeline):
        wal = SlotWal(
            slot_name='orders-slot', active=True, wal_size_mb=12.5, lag_bytes=2048,
            physical_wal={'total_size_mb': 48.0, 'total_size_pretty': '48 MB', 'file_count': 3},
        )

        with patch('pipelines.views.pipeline_views.read_slot_wal', return_value=wal) as reader:
            response = client.get(f'/api/pipelines/{pipeline.pk}/wal-size')

        assert response.status_code == 200
        data = response.json()['data']
        assert data['wal_size_mb'] == 12.5
        assert (data['max_wal_size_mb'], data['alert_threshold_percent']) == (1024, 80)
        assert data['replication_slot'] == {
            'slot_name': 'orders-slot', 'active': True, 'wal_status': 'streaming', 'lag_bytes': 2048,
        }
        assert data['physical_wal']['file_count'] == 3
        assert reader.call_args[0][1] == 'orders-slot'
        assert reader.call_args[1] == {'include_wal_dir': True}

    def test_wal_size_without_slot(self, client, pipeline):
        with patch('pipelines.views.pipeline_views.read_slot_wal', return_value=None):
            response = client.get(f'/api/pipelines/{pipeline.pk}/wal-size')

        assert response.json() == {'success': True, 'data': None, 'message': 'No replication slot found: orders-slot'}

    def test_wal_size_for_non_postgres_source(self, client, pipeline):
        source = pipeline.connectors.get(type='source')
        source.connector_class = 'io.debezium.connector.mysql.MySqlConnector'
        source.config = {'connector.class': 'io.debezium.connector.mysql.MySqlConnector'}
        source.save()

        with patch('pipelines.views.pipeline_views.read_slot_wal') as reader:
            response = client.get(f'/api/pipelines/{pipeline.pk}/wal-size')

        assert response.status_code == 200
        assert response.json()['data'] is None
        assert response.json()['message'] == 'WAL monitoring only available for PostgreSQL sources'
        reader.assert_not_called()

    def test_wal_size_without_source_is_404(self, client, db):
        empty = Pipeline.objects.create(name='empty', status='ready')

        response = client.get(f'/api/pipelines/{empty.pk}/wal-size')

        assert response.status_code == 404
        assert response.json() == {'success': False, 'error': 'Source connector not found'}

    def test_wal_size_database_error_is_500(self, client, pipeline):
        with patch('pipelines.views.pipeline_views.read_slot_wal', side_effect=Exception('could not connect')):
            response = client.get(f'/api/pipelines/{pipeline.pk}/wal-size')

        assert response.status_code == 500
        assert response.json() == {'success': False, 'error': 'could not connect'}


class TestConnectorProxy:
    """Pass-through connector actions."""

    def test_pause_connector(self, client, connector_manager):
        with patch('pipelines.views.connector_views.KafkaConnectManager', return_value=connector_manager):
            response = client.post('/api/connectors/orders-source/pause')

        assert response.status_code == 200
        assert response.json() == {'success': True, 'message': 'Connector orders-source paused'}

    def test_upstream_status_is_passed_through(self, client, connector_manager):
        connector_manager.restart_connector.return_value = (False, 'HTTP 404: Connector gone not found')

        with patch('pipelines.views.connector_views.KafkaConnectManager', return_value=connector_manager):
            response = client.post('/api/connectors/gone/restart')

        assert response.status_code == 404
        assert response.json()['error'] == 'Kafka Connect error: HTTP 404: Connector gone not found'

    def test_delete_connector(self, client, connector_manager):
        with patch('pipelines.views.connector_views.KafkaConnectManager', return_value=connector_manager):
            response = client.delete('/api/connectors/orders-source')

        assert response.status_code == 200
        connector_manager.delete_connector.assert_called_once_with('orders-source')

    def test_deploy_pending_without_changes_is_400(self, client, pipeline):
        source = pipeline.connectors.get(type='source')

        response = client.post(f'/api/connectors/{source.pk}/deploy-pending')

        assert response.status_code == 400
        assert response.json()['error'] == 'No pending changes to deploy'


class TestAlerts:
    """Alert listing, resolution and statistics."""

    @pytest.fixture
    def alert(self, pipeline):
        alert, _ = AlertStore().raise_alert(
            pipeline, 'CONNECTOR_PAUSED', 'warning', 'paused', connector_type='source'
        )
        return alert

    def test_list_unresolved(self, client, alert):
        body = client.get('/api/alerts').json()

        assert [a['id'] for a in body['alerts']] == [alert.id]
        assert body['alerts'][0]['pipeline_name'] == 'orders'

    def test_pipeline_alerts_filter(self, client, alert, pipeline):
        alert.resolve()

        unresolved = client.get(f'/api/pipelines/{pipeline.pk}/alerts?resolved=false').json()
        resolved = client.get(f'/api/pipelines/{pipeline.pk}/alerts?resolved=true').json()

        assert unresolved['alerts'] == []
        assert [a['id'] for a in resolved['alerts']] == [alert.id]

    def test_resolve_blocked_by_paused_connector(self, client, alert, connector_manager):
        connector_manager.get_connector_status.return_value = (True, connector_status('PAUSED'))

        with patch('pipelines.orchestration.status.KafkaConnectManager', return_value=connector_manager):
            response = client.post(f'/api/alerts/{alert.id}/resolve')

        assert response.status_code == 400
        body = response.json()
        assert body['requiresAction'] is True
        assert body['pausedConnector'] == 'orders-source'
        alert.refresh_from_db()
        assert alert.resolved is False

    def test_resolve(self, client, alert, connector_manager):
        connector_manager.get_connector_status.return_value = (True, connector_status('RUNNING'))

        with patch('pipelines.orchestration.status.KafkaConnectManager', return_value=connector_manager):
            response = client.post(f'/api/alerts/{alert.id}/resolve')

        assert response.status_code == 200
        assert response.json()['alert']['resolved'] is True

    def test_resolve_all(self, client, alert, pipeline, connector_manager):
        with patch('pipelines.orchestration.status.KafkaConnectManager', return_value=connector_manager):
            response = client.post(f'/api/pipelines/{pipeline.pk}/alerts/resolve-all')

        assert response.json() == {'success': True, 'resolved_count': 1}
        assert AlertEvent.objects.filter(resolved=False).count() == 0

    def test_stats(self, client, alert):
        stats = client.get('/api/alerts/stats').json()['stats']

        assert stats['unresolved_count'] == 1
        assert stats['warning_count'] == 1


class TestHealth:
    """GET /api/health"""

    def test_unreachable_connect(self, client, connector_manager):
        connector_manager.check_kafka_connect_health.return_value = (False, 'Connection error: refused')

        with patch('pipelines.views.monitoring_views.KafkaConnectManager', return_value=connector_manager):
            response = client.get('/api/health')

        assert response.json() == {
            'status': 'ok',
            'kafkaConnect': 'http://connect:8083',
            'kafkaConnectReachable': False,
            'kafkaConnectError': 'Connection error: refused',
        }
