"""
Connector config normalization.

Turns a stored, loosely structured connector config document into the flat
string-to-string map Kafka Connect accepts. Correction rules that only apply
to one connector class are registered per class in ``CLASS_CORRECTIONS``;
classes without an entry only get the generic steps.

Nothing here performs I/O or mutates its input.
"""

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from django.conf import settings

logger = logging.getLogger(__name__)

POSTGRES_CONNECTOR = 'io.debezium.connector.postgresql.PostgresConnector'
MYSQL_CONNECTOR = 'io.debezium.connector.mysql.MySqlConnector'
ORACLE_CONNECTOR = 'io.debezium.connector.oracle.OracleConnector'
JDBC_SINK_CONNECTOR = 'io.debezium.connector.jdbc.JdbcSinkConnector'

CONNECTOR_KINDS = ('source', 'sink')

# Keys that hold nested config, possibly JSON-encoded as a string
NESTED_CONFIG_KEYS = ('config', 'snapshot_config')

# Bookkeeping keys that must never reach Kafka Connect
METADATA_KEYS = ('connector_class', 'snapshot_config', 'registry_connector', 'registry_version', 'checksum')

LOOPBACK_HOSTS = ('127.0.0.1', 'localhost')
LOOPBACK_KAFKA = '127.0.0.1:9092'
SCHEMA_HISTORY_BOOTSTRAP_KEYS = (
    'schema.history.internal.kafka.bootstrap.servers',
    'database.history.kafka.bootstrap.servers',
)

# JDBC URL scheme prefix per database family
JDBC_URL_PREFIXES = {
    'postgres': 'jdbc:postgresql://',
    'oracle': 'jdbc:oracle:thin:@',
    'mysql': 'jdbc:mysql://',
}

DEFAULT_IN_CLUSTER_HOSTS = {
    'postgres': 'pg-debezium',
    'oracle': 'oracle-xe',
    'mysql': 'mysql',
}

PLACEHOLDER_TOPICS = ('', 'placeholder')


class NormalizationError(ValueError):
    """Raised when a config cannot be turned into a deployable connector config"""
    pass


def connector_family(connector_class: str) -> Optional[str]:
    """Map a connector class to its database family (postgres, oracle, mysql)."""
    if 'postgresql.PostgresConnector' in connector_class:
        return 'postgres'
    if 'oracle.OracleConnector' in connector_class:
        return 'oracle'
    if 'mysql.MySqlConnector' in connector_class:
        return 'mysql'
    return None


def _in_cluster_hosts() -> Dict[str, str]:
    hosts = dict(DEFAULT_IN_CLUSTER_HOSTS)
    hosts.update(getattr(settings, 'DEBEZIUM_CONFIG', {}).get('IN_CLUSTER_HOSTS', {}))
    return hosts


def _internal_kafka() -> str:
    return getattr(settings, 'DEBEZIUM_CONFIG', {}).get('KAFKA_INTERNAL_SERVERS', 'kafka:9092')


# ==========================================
# Step 1: flattening
# ==========================================

def _hoist(target: Dict[str, Any], nested: Mapping[str, Any]):
    for key, value in nested.items():
        if value is not None:
            target[key] = value


def flatten_config(raw_config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Hoist one level of nested config; later duplicates win."""
    flat: Dict[str, Any] = {}

    for key, value in (raw_config or {}).items():
        if value is None:
            continue

        if isinstance(value, Mapping):
            _hoist(flat, value)
        elif isinstance(value, str) and key in NESTED_CONFIG_KEYS and value.strip().startswith('{'):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                flat[key] = value
                continue
            if isinstance(parsed, Mapping):
                _hoist(flat, parsed)
            else:
                flat[key] = value
        else:
            flat[key] = value

    if flat.get('connector_class') and not flat.get('connector.class'):
        flat['connector.class'] = flat['connector_class']

    for key in METADATA_KEYS:
        flat.pop(key, None)

    return flat


# ==========================================
# Step 2: network locality
# ==========================================

def rewrite_loopback_hosts(config: Dict[str, Any], hosts: Mapping[str, str]):
    family = connector_family(str(config.get('connector.class', '')))
    if config.get('database.hostname') in LOOPBACK_HOSTS and family in hosts:
        logger.debug(f"Rewriting loopback database.hostname to {hosts[family]}")
        config['database.hostname'] = hosts[family]

    internal_kafka = _internal_kafka()
    for key in SCHEMA_HISTORY_BOOTSTRAP_KEYS:
        if config.get(key) == LOOPBACK_KAFKA:
            config[key] = internal_kafka


def rewrite_jdbc_url(url: str, hosts: Mapping[str, str]) -> str:
    for family, prefix in JDBC_URL_PREFIXES.items():
        for loopback in LOOPBACK_HOSTS:
            if f"{prefix}{loopback}" in url:
                return url.replace(f"{prefix}{loopback}", f"{prefix}{hosts[family]}")
    return url


# ==========================================
# Steps 3-4: per-class corrections
# ==========================================

CorrectionFn = Callable[[Dict[str, Any], Mapping[str, str]], None]

CLASS_CORRECTIONS: Dict[str, CorrectionFn] = {}


def corrections_for(connector_class: str):
    """Register a correction function for one connector class."""
    def decorator(func: CorrectionFn) -> CorrectionFn:
        CLASS_CORRECTIONS[connector_class] = func
        return func
    return decorator


@corrections_for(JDBC_SINK_CONNECTOR)
def correct_jdbc_sink(config: Dict[str, Any], hosts: Mapping[str, str]):
    if config.get('connection.user') and not config.get('connection.username'):
        config['connection.username'] = config.pop('connection.user')

    # Kafka Connect rejects a sink with both topics and topics.regex
    topics = config.get('topics')
    placeholder = topics is not None and str(topics).strip() in PLACEHOLDER_TOPICS
    if config.get('topics.regex') and topics:
        if placeholder:
            config.pop('topics')
        else:
            config.pop('topics.regex')
    elif placeholder:
        config.pop('topics')

    if config.get('connection.url'):
        config['connection.url'] = rewrite_jdbc_url(str(config['connection.url']), hosts)

    if not config.get('primary.key.mode'):
        config['primary.key.mode'] = 'record_key'
    if config.get('delete.enabled') is None:
        config['delete.enabled'] = 'true'


@corrections_for(ORACLE_CONNECTOR)
def correct_oracle(config: Dict[str, Any], hosts: Mapping[str, str]):
    config.pop('database.schema', None)

    if config.get('database.connection.adapter') != 'xstream':
        config.pop('database.out.server.name', None)

    # Debezium's version probe fails on 23ai banners, so pin the version
    if not config.get('database.oracle.version'):
        config['database.oracle.version'] = '23.0.0.0'
    if config.get('schema.history.internal.store.only.captured.tables.ddl') is None:
        config['schema.history.internal.store.only.captured.tables.ddl'] = 'true'


# ==========================================
# Steps 5-7: overrides, restore suffix, stringify
# ==========================================

def apply_forced_overrides(config: Dict[str, Any], connector_name: str, pipeline_name: str, kind: str):
    config['name'] = connector_name

    if config.get('slot.name'):
        config['slot.name'] = str(config['slot.name']).replace('-', '_')

    config['errors.tolerance'] = 'all'
    config['errors.deadletterqueue.topic.name'] = dlq_topic_name(pipeline_name, kind)
    config['errors.deadletterqueue.topic.replication.factor'] = '1'
    config['errors.deadletterqueue.context.headers.enable'] = 'true'


def apply_restore_suffix(config: Dict[str, Any], restore_count: int):
    """Append ``_r{N}`` to the source identity fields of a restored pipeline."""
    if not config.get('database.server.name'):
        return

    suffix = f"_r{restore_count}"
    for key in ('database.server.name', 'slot.name', 'topic.prefix'):
        value = config.get(key)
        if value and not str(value).endswith(suffix):
            config[key] = f"{value}{suffix}"


def stringify_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(stringify_value(v) for v in value)
    if isinstance(value, Mapping):
        return json.dumps(value)
    return str(value)


def dlq_topic_name(pipeline_name: str, kind: str) -> str:
    return f"{pipeline_name}-{kind}-dlq"


def normalize_connector_config(
    raw_config: Optional[Mapping[str, Any]],
    connector_name: str,
    pipeline_name: str,
    kind: str,
    restore_count: int = 0
) -> Dict[str, str]:
    """
    Build a deploy-ready flat config.

    Args:
        raw_config: Stored config document (may nest one level)
        connector_name: Name the connector is registered under
        pipeline_name: Owning pipeline's name, used for DLQ topic names
        kind: 'source' or 'sink'
        restore_count: Times the pipeline was restored

    Returns:
        Dict[str, str]: Flat config with string values

    Raises:
        NormalizationError: kind is unknown or no connector class is given
    """
    if kind not in CONNECTOR_KINDS:
        raise NormalizationError(f"Unknown connector kind '{kind}'")

    hosts = _in_cluster_hosts()
    config = flatten_config(raw_config)

    connector_class = str(config.get('connector.class', '')).strip()
    if not connector_class:
        raise NormalizationError(f"Connector {connector_name} has no connector.class")

    rewrite_loopback_hosts(config, hosts)

    correct = CLASS_CORRECTIONS.get(connector_class)
    if correct is not None:
        correct(config, hosts)

    apply_forced_overrides(config, connector_name, pipeline_name, kind)

    if kind == 'source' and restore_count > 0:
        apply_restore_suffix(config, restore_count)

    return {key: stringify_value(value) for key, value in config.items()}
