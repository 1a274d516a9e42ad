"""
Kafka Connect Manager - Drives source and sink connectors through the Kafka Connect REST API
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

SUCCESS_CODES = (200, 201, 202, 204)


class KafkaConnectException(Exception):
    """Base exception for Kafka Connect operations"""
    pass


class ConnectorNotFoundException(KafkaConnectException):
    """Raised when connector is not found"""
    pass


class ConnectorDeploymentException(KafkaConnectException):
    """Raised when a connector cannot be created or updated"""
    pass


class KafkaConnectManager:
    """
    Manager class for Kafka Connect operations

    Handles:
    - Create-or-update deployment of connectors
    - Deleting connectors and their stored offsets
    - Connector and task status
    - Pausing/Resuming/Restarting connectors

    Every call carries an explicit timeout. Status probes use the shorter
    ``STATUS_TIMEOUT`` so a hung worker cannot stall a status fan-out.
    """

    def __init__(self, base_url: Optional[str] = None):
        debezium_config = getattr(settings, 'DEBEZIUM_CONFIG', {})

        self.kafka_connect_url = (base_url or debezium_config.get(
            'KAFKA_CONNECT_URL',
            'http://localhost:8083'
        )).rstrip('/')
        self.request_timeout = debezium_config.get('REQUEST_TIMEOUT', 30)
        self.status_timeout = debezium_config.get('STATUS_TIMEOUT', 3)

        # API endpoints
        self.connectors_url = f"{self.kafka_connect_url}/connectors"

        logger.debug(f"KafkaConnectManager initialized with URL: {self.kafka_connect_url}")

    def connector_url(self, connector_name: str, *path: str) -> str:
        """URL of one connector's resource; the name is percent-encoded as a single path segment."""
        return '/'.join((self.connectors_url, quote(connector_name, safe=''), *path))

    def _send(
        self,
        method: str,
        url: str,
        data: Optional[Dict] = None,
        timeout: Optional[float] = None
    ) -> requests.Response:
        headers = {'Content-Type': 'application/json'}
        return requests.request(
            method,
            url,
            headers=headers,
            json=data,
            timeout=timeout or self.request_timeout,
        )

    def _make_request(
        self,
        method: str,
        url: str,
        data: Optional[Dict] = None,
        timeout: Optional[float] = None
    ) -> Tuple[bool, Optional[Any], Optional[str]]:
        """
        Make HTTP request to Kafka Connect API

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            url: Full URL
            data: Request body data
            timeout: Request timeout in seconds (defaults to REQUEST_TIMEOUT)

        Returns:
            Tuple[bool, Optional[Any], Optional[str]]: (success, response_data, error_message)
        """
        timeout = timeout or self.request_timeout
        try:
            response = self._send(method, url, data, timeout)
            logger.debug(f"method: {method}, url: {url}, status: {response.status_code}")

            if response.status_code in SUCCESS_CODES:
                # 204 and most 202 responses carry no body
                if response.status_code == 204 or not response.text:
                    return True, {}, None
                try:
                    return True, response.json(), None
                except json.JSONDecodeError:
                    return True, {}, None

            error_message = self._extract_error(response)

            # 404 is expected when checking if connector exists - log as debug
            if response.status_code == 404:
                logger.debug(f"Resource not found: {method} {url}")
            else:
                logger.error(f"Request failed: {method} {url} - Status: {response.status_code} - {error_message}")

            return False, None, f"HTTP {response.status_code}: {error_message}"

        except requests.exceptions.Timeout:
            error_msg = f"Request timeout after {timeout} seconds"
            logger.error(f"{error_msg}: {method} {url}")
            return False, None, error_msg
        except requests.exceptions.ConnectionError as e:
            error_msg = f"Connection error: {str(e)}"
            logger.error(error_msg)
            return False, None, error_msg
        except requests.exceptions.RequestException as e:
            error_msg = f"Request failed: {str(e)}"
            logger.error(error_msg)
            return False, None, error_msg

    @staticmethod
    def _extract_error(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return body.get('message', response.text)
        return response.text

    # ==========================================
    # Cluster
    # ==========================================

    def check_kafka_connect_health(self) -> Tuple[bool, Optional[str]]:
        """
        Check if Kafka Connect is running and healthy

        Returns:
            Tuple[bool, Optional[str]]: (is_healthy, error_message)
        """
        success, _, error = self._make_request('GET', self.kafka_connect_url, timeout=self.status_timeout)
        if success:
            return True, None
        return False, error

    def get_cluster_info(self) -> Optional[Dict]:
        """Worker version, commit and Kafka cluster id from ``GET /``."""
        success, data, error = self._make_request('GET', self.kafka_connect_url, timeout=self.status_timeout)
        if success and isinstance(data, dict):
            return data
        logger.debug(f"Kafka Connect cluster info unavailable: {error}")
        return None

    def list_connectors(self) -> List[str]:
        """List all existing connector names."""
        success, data, error = self._make_request('GET', self.connectors_url)
        if success and isinstance(data, list):
            return data
        if not success:
            logger.error(f"Failed to list connectors: {error}")
        return []

    def list_connector_plugins(self) -> List[Dict]:
        success, data, error = self._make_request('GET', f"{self.kafka_connect_url}/connector-plugins")
        if success and isinstance(data, list):
            return data
        if not success:
            logger.error(f"Failed to list connector plugins: {error}")
        return []

    # ==========================================
    # Reads
    # ==========================================

    def connector_exists(self, connector_name: str) -> Tuple[Optional[bool], Optional[str]]:
        """
        Probe for a connector by name.

        Returns:
            Tuple[Optional[bool], Optional[str]]: (exists, error_message).
            ``exists`` is None when the probe itself failed (anything other
            than 200 or 404).
        """
        url = self.connector_url(connector_name)
        try:
            response = self._send('GET', url)
        except requests.exceptions.RequestException as e:
            error_msg = f"Failed to probe connector {connector_name}: {str(e)}"
            logger.error(error_msg)
            return None, error_msg

        if response.status_code == 200:
            return True, None
        if response.status_code == 404:
            return False, None

        error_msg = f"HTTP {response.status_code}: {self._extract_error(response)}"
        logger.error(f"Unexpected probe response for {connector_name}: {error_msg}")
        return None, error_msg

    def get_connector_status(
        self,
        connector_name: str,
        timeout: Optional[float] = None
    ) -> Tuple[bool, Optional[Dict]]:
        """
        Get connector and task status

        Args:
            connector_name: Name of the connector
            timeout: Override for the status timeout

        Returns:
            Tuple[bool, Optional[Dict]]: (exists, status_data)
        """
        url = self.connector_url(connector_name, 'status')
        success, data, error = self._make_request('GET', url, timeout=timeout or self.status_timeout)

        if success and data:
            logger.debug(f"Connector {connector_name} status: {data.get('connector', {}).get('state', 'UNKNOWN')}")
            return True, data

        if error and error.startswith('HTTP 404'):
            logger.debug(f"Connector {connector_name} not found")
        else:
            logger.warning(f"Failed to get connector status for {connector_name}: {error}")
        return False, None

    def get_connector_config(self, connector_name: str) -> Optional[Dict]:
        """
        Get connector configuration

        Args:
            connector_name: Name of the connector

        Returns:
            Optional[Dict]: Connector configuration or None
        """
        url = self.connector_url(connector_name, 'config')
        success, data, error = self._make_request('GET', url)
        if success and data:
            return data
        logger.error(f"Failed to get connector config for {connector_name}: {error}")
        return None

    def get_connector_topics(self, connector_name: str) -> List[str]:
        """
        Get topics that a connector is producing to or consuming from.

        Kafka Connect answers with ``{connector_name: {"topics": [...]}}``;
        only the list is returned.
        """
        url = self.connector_url(connector_name, 'topics')
        success, data, error = self._make_request('GET', url, timeout=self.status_timeout)
        if success and data:
            return data.get(connector_name, {}).get('topics', [])
        logger.debug(f"No topics for connector {connector_name}: {error}")
        return []

    # ==========================================
    # Writes
    # ==========================================

    def create_connector(self, connector_name: str, config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        Create a new connector (POST /connectors). Fails if the name is taken.

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        request_body = {
            'name': connector_name,
            'config': config,
        }
        success, _, error = self._make_request('POST', self.connectors_url, request_body)
        if success:
            logger.info(f"Successfully created connector: {connector_name}")
            return True, None
        logger.error(f"Failed to create connector {connector_name}: {error}")
        return False, error

    def update_connector_config(self, connector_name: str, new_config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        Update connector configuration (PUT /connectors/{name}/config)

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        url = self.connector_url(connector_name, 'config')
        success, _, error = self._make_request('PUT', url, new_config)
        if success:
            logger.info(f"Successfully updated connector config: {connector_name}")
            return True, None
        logger.error(f"Failed to update connector config {connector_name}: {error}")
        return False, error

    def deploy_connector(
        self,
        connector_name: str,
        config: Dict[str, Any]
    ) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Create or update a connector.

        Probes with GET first, then PUTs the config of an existing connector
        or POSTs a new one. Repeated calls converge on the same state, but the
        probe and the write are two requests: two concurrent callers can both
        see 404 and both POST, in which case the loser gets a 409 error.

        Args:
            connector_name: Name of the connector
            config: Flat string-valued connector config

        Returns:
            Tuple[bool, Optional[str], Optional[str]]: (success, action, error_message)
            where action is 'created' or 'updated'.
        """
        exists, error = self.connector_exists(connector_name)
        if exists is None:
            return False, None, f"Failed to check connector status: {error}"

        if exists:
            success, error = self.update_connector_config(connector_name, config)
            return success, 'updated', error

        success, error = self.create_connector(connector_name, config)
        return success, 'created', error

    def delete_connector(self, connector_name: str) -> Tuple[bool, Optional[str]]:
        """
        Delete a connector. A connector that is already gone counts as deleted.

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        url = self.connector_url(connector_name)
        success, _, error = self._make_request('DELETE', url)
        if success:
            logger.info(f"Successfully deleted connector: {connector_name}")
            return True, None
        if error and error.startswith('HTTP 404'):
            logger.debug(f"Connector {connector_name} does not exist (already deleted or never created)")
            return True, None
        logger.error(f"Failed to delete connector {connector_name}: {error}")
        return False, error

    def delete_connector_offsets(self, connector_name: str) -> Tuple[bool, Optional[str]]:
        """
        Reset stored offsets of a stopped or deleted connector.

        Only Kafka Connect 3.6+ supports this endpoint, so callers treat a
        failure as informational.
        """
        url = self.connector_url(connector_name, 'offsets')
        success, _, error = self._make_request('DELETE', url)
        if success:
            logger.info(f"Cleared stored offsets for connector: {connector_name}")
            return True, None
        return False, error

    def pause_connector(self, connector_name: str) -> Tuple[bool, Optional[str]]:
        return self._lifecycle_action(connector_name, 'pause', 'PUT')

    def resume_connector(self, connector_name: str) -> Tuple[bool, Optional[str]]:
        return self._lifecycle_action(connector_name, 'resume', 'PUT')

    def restart_connector(self, connector_name: str) -> Tuple[bool, Optional[str]]:
        return self._lifecycle_action(connector_name, 'restart', 'POST')

    def _lifecycle_action(self, connector_name: str, action: str, method: str) -> Tuple[bool, Optional[str]]:
        url = self.connector_url(connector_name, action)
        success, _, error = self._make_request(method, url)
        if success:
            logger.info(f"Successfully ran {action} on connector: {connector_name}")
            return True, None
        logger.error(f"Failed to {action} connector {connector_name}: {error}")
        return False, error


def http_status_from_error(error: Optional[str], default: int = 500) -> int:
    """Recover the upstream status code from an ``HTTP nnn: ...`` error string."""
    if error and error.startswith('HTTP '):
        code = error[5:8]
        if code.isdigit():
            return int(code)
    return default
