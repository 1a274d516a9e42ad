"""
Unit tests for the Kafka Connect REST client.

``requests.request`` is patched; no Kafka Connect worker is needed.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from cdcstream.utils.connect.connector_manager import KafkaConnectManager, http_status_from_error

REQUEST = 'cdcstream.utils.connect.connector_manager.requests.request'


def fake_response(status_code, body=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.text = text or ''
        response.json.side_effect = ValueError('no body')
    else:
        response.text = text or 'body'
        response.json.return_value = body
    return response


@pytest.fixture
def manager():
    return KafkaConnectManager(base_url='http://connect:8083/')


class TestDeployConnector:
    """Test create-or-update deployment."""

    def test_creates_missing_connector(self, manager):
        with patch(REQUEST) as request:
            request.side_effect = [
                fake_response(404, {'error_code': 404, 'message': 'Connector orders-source not found'}),
                fake_response(201, {'name': 'orders-source'}),
            ]

            success, action, error = manager.deploy_connector('orders-source', {'connector.class': 'X'})

        assert (success, action, error) == (True, 'created', None)
        method, url = request.call_args_list[1][0]
        assert method == 'POST'
        assert url == 'http://connect:8083/connectors'
        assert request.call_args_list[1][1]['json'] == {'name': 'orders-source', 'config': {'connector.class': 'X'}}

    def test_updates_existing_connector(self, manager):
        with patch(REQUEST) as request:
            request.side_effect = [
                fake_response(200, {'name': 'orders-source'}),
                fake_response(200, {'name': 'orders-source'}),
            ]

            success, action, error = manager.deploy_connector('orders-source', {'connector.class': 'X'})

        assert (success, action, error) == (True, 'updated', None)
        method, url = request.call_args_list[1][0]
        assert method == 'PUT'
        assert url == 'http://connect:8083/connectors/orders-source/config'

    def test_failed_existence_check_aborts(self, manager):
        with patch(REQUEST) as request:
            request.return_value = fake_response(500, {'message': 'worker busy'})

            success, action, error = manager.deploy_connector('orders-source', {})

        assert success is False
        assert action is None
        assert error == 'Failed to check connector status: HTTP 500: worker busy'
        assert request.call_count == 1

    def test_rejected_config_reports_error(self, manager):
        with patch(REQUEST) as request:
            request.side_effect = [
                fake_response(404, {'message': 'not found'}),
                fake_response(400, {'message': 'Connector configuration is invalid'}),
            ]

            success, action, error = manager.deploy_connector('orders-source', {})

        assert (success, action) == (False, 'created')
        assert error == 'HTTP 400: Connector configuration is invalid'


class TestLifecycleCalls:
    """Test delete, pause, resume and restart."""

    def test_delete_missing_connector_succeeds(self, manager):
        with patch(REQUEST, return_value=fake_response(404, {'message': 'not found'})):
            assert manager.delete_connector('gone') == (True, None)

    def test_delete_with_no_content(self, manager):
        with patch(REQUEST, return_value=fake_response(204)) as request:
            assert manager.delete_connector('orders-source') == (True, None)

        assert request.call_args[0] == ('DELETE', 'http://connect:8083/connectors/orders-source')

    def test_delete_failure(self, manager):
        with patch(REQUEST, return_value=fake_response(409, {'message': 'rebalance in progress'})):
            assert manager.delete_connector('orders-source') == (False, 'HTTP 409: rebalance in progress')

    @pytest.mark.parametrize('action, method', [
        ('pause', 'PUT'),
        ('resume', 'PUT'),
        ('restart', 'POST'),
    ])
    def test_lifecycle_endpoints(self, manager, action, method):
        with patch(REQUEST, return_value=fake_response(202)) as request:
            success, error = getattr(manager, f"{action}_connector")('orders-source')

        assert (success, error) == (True, None)
        assert request.call_args[0] == (method, f'http://connect:8083/connectors/orders-source/{action}')

    def test_connector_name_is_one_path_segment(self, manager):
        with patch(REQUEST, return_value=fake_response(202)) as request:
            manager.pause_connector('orders/../config?x=1')

        assert request.call_args[0] == ('PUT', 'http://connect:8083/connectors/orders%2F..%2Fconfig%3Fx%3D1/pause')

    def test_connector_url(self, manager):
        assert manager.connector_url('orders-source') == 'http://connect:8083/connectors/orders-source'
        assert manager.connector_url('a b', 'status') == 'http://connect:8083/connectors/a%20b/status'


class TestReads:
    """Test status, topic and health reads."""

    def test_status_uses_status_timeout(self, manager):
        body = {'connector': {'state': 'RUNNING'}, 'tasks': []}
        with patch(REQUEST, return_value=fake_response(200, body)) as request:
            exists, status = manager.get_connector_status('orders-source')

        assert exists is True
        assert status == body
        assert request.call_args[1]['timeout'] == manager.status_timeout

    def test_status_of_missing_connector(self, manager):
        with patch(REQUEST, return_value=fake_response(404, {'message': 'not found'})):
            assert manager.get_connector_status('gone') == (False, None)

    def test_connector_topics(self, manager):
        body = {'orders-source': {'topics': ['orders.public.items']}}
        with patch(REQUEST, return_value=fake_response(200, body)):
            assert manager.get_connector_topics('orders-source') == ['orders.public.items']

    def test_timeout_is_reported(self, manager):
        with patch(REQUEST, side_effect=requests.exceptions.Timeout()):
            healthy, error = manager.check_kafka_connect_health()

        assert healthy is False
        assert error.startswith('Request timeout after')

    def test_connection_error_is_reported(self, manager):
        with patch(REQUEST, side_effect=requests.exceptions.ConnectionError('refused')):
            healthy, error = manager.check_kafka_connect_health()

        assert healthy is False
        assert error.startswith('Connection error')

    def test_cluster_info(self, manager):
        body = {'version': '3.7.0', 'commit': 'abcdef123456', 'kafka_cluster_id': 'xyz'}
        with patch(REQUEST, return_value=fake_response(200, body)):
            assert manager.get_cluster_info() == body

    def test_existence_check_error_is_unknown(self, manager):
        with patch(REQUEST, return_value=fake_response(503, {'message': 'unavailable'})):
            exists, error = manager.connector_exists('orders-source')

        assert exists is None
        assert error == 'HTTP 503: unavailable'


class TestHttpStatusFromError:
    """Test recovery of upstream status codes."""

    @pytest.mark.parametrize('error, expected', [
        ('HTTP 404: Connector x not found', 404),
        ('HTTP 409: rebalance', 409),
        ('Connection error: refused', 500),
        (None, 500),
        ('HTTP abc', 500),
    ])
    def test_status_codes(self, error, expected):
        assert http_status_from_error(error) == expected
