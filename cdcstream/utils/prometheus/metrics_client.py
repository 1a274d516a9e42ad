"""
Prometheus client for Kafka Connect task metrics.

Kafka Connect exposes its JMX task metrics through the Prometheus JMX
exporter; every series is labelled with ``connector`` and ``task``. This
client runs instant queries against ``/api/v1/query`` and returns plain
floats.
"""

import logging
from typing import Dict, List, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

# Source task metrics
SOURCE_POLL_TOTAL = 'kafka_connect_source_task_metrics_source_record_poll_total'
SOURCE_POLL_RATE = 'kafka_connect_source_task_metrics_source_record_poll_rate'
SOURCE_WRITE_TOTAL = 'kafka_connect_source_task_metrics_source_record_write_total'
SOURCE_WRITE_RATE = 'kafka_connect_source_task_metrics_source_record_write_rate'

# Sink task metrics
SINK_SEND_TOTAL = 'kafka_connect_sink_task_metrics_sink_record_send_total'
SINK_SEND_RATE = 'kafka_connect_sink_task_metrics_sink_record_send_rate'
SINK_READ_RATE = 'kafka_connect_sink_task_metrics_sink_record_read_rate'

# Debezium streaming metrics
DEBEZIUM_EVENTS_SEEN = 'debezium_metrics_TotalNumberOfEventsSeen'

# Error metrics
TASK_ERRORS_LOGGED = 'kafka_connect_task_error_metrics_total_errors_logged'


class PrometheusMetricsClient:
    """HTTP client for the Prometheus instant-query API."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        prometheus_config = getattr(settings, 'PROMETHEUS_CONFIG', {})
        self.base_url = (base_url or prometheus_config.get('URL', 'http://localhost:9090')).rstrip('/')
        self.timeout = timeout or prometheus_config.get('TIMEOUT', 5)

    # ------------------------------------------------------------------
    # Low-level query access
    # ------------------------------------------------------------------

    @staticmethod
    def build_selector(metric: str, connector: str, task: Optional[str] = None) -> str:
        if task is not None:
            return f'{metric}{{connector="{connector}",task="{task}"}}'
        return f'{metric}{{connector="{connector}"}}'

    def _query(self, promql: str) -> Optional[List[Dict]]:
        """Run an instant query.

        Returns:
            The ``data.result`` vector, or None when Prometheus is
            unreachable or answers with an error.
        """
        try:
            resp = requests.get(
                f"{self.base_url}/api/v1/query",
                params={'query': promql},
                timeout=self.timeout,
            )

            if resp.status_code != 200:
                logger.debug("Prometheus returned HTTP %s for %s", resp.status_code, promql)
                return None

            data = resp.json()
            if data.get('status') != 'success':
                logger.debug("Prometheus query failed: %s", data.get('error'))
                return None

            return data.get('data', {}).get('result', [])

        except requests.ConnectionError:
            logger.warning("Prometheus unreachable at %s", self.base_url)
            return None
        except requests.Timeout:
            logger.warning("Prometheus request timed out (%ss)", self.timeout)
            return None
        except (requests.RequestException, ValueError):
            logger.warning("Prometheus request failed", exc_info=True)
            return None

    @staticmethod
    def _sample_value(sample: Dict) -> float:
        try:
            return float(sample['value'][1])
        except (KeyError, IndexError, TypeError, ValueError):
            return 0.0

    # ------------------------------------------------------------------
    # Aggregations
    # ------------------------------------------------------------------

    def query_sum(self, metric: str, connector: str, task: Optional[str] = None) -> Optional[float]:
        """Sum a metric over every task of a connector.

        Returns None when the series is absent or Prometheus is down, so
        callers can tell "no data" apart from a genuine zero.
        """
        result = self._query(self.build_selector(metric, connector, task))
        if not result:
            return None
        return sum(self._sample_value(sample) for sample in result)

    def query_first(self, metric: str, connector: str) -> Optional[float]:
        """Value of the first series returned, typically task 0."""
        result = self._query(self.build_selector(metric, connector))
        if not result:
            return None
        return self._sample_value(result[0])

    def query_per_task(self, metric: str, connector: str) -> List[Dict]:
        """Return ``[{'task': '0', 'value': 1.5}, ...]`` for each task series."""
        result = self._query(self.build_selector(metric, connector))
        if not result:
            return []
        return [
            {
                'task': sample.get('metric', {}).get('task', '0'),
                'value': self._sample_value(sample),
            }
            for sample in result
        ]

    def query_sum_or_zero(self, metric: str, connector: str) -> float:
        value = self.query_sum(metric, connector)
        return value if value is not None else 0.0
