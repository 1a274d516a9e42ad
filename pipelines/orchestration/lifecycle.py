"""
Pipeline lifecycle operations outside of deploy and restore:
start/pause, connector teardown and purging of expired soft-deleted pipelines.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from django.utils import timezone
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from cdcstream.utils.kafka.topic_manager import KafkaTopicManager
from pipelines.models import Pipeline, PipelineConnector
from pipelines.utils.config_normalizer import connector_family, dlq_topic_name

logger = logging.getLogger(__name__)

# In-cluster hostnames that are only reachable as localhost from this process
CLUSTER_ONLY_HOSTS = ('pg-debezium', 'postgres')


# ==========================================
# Start / pause
# ==========================================

def set_pipeline_running(
    pipeline: Pipeline,
    running: bool,
    connector_manager: Optional[KafkaConnectManager] = None
) -> List[Dict[str, str]]:
    """
    Resume (running=True) or pause every connector of a pipeline and record
    the new pipeline status.

    Returns:
        List of per-connector errors; empty when every call succeeded
    """
    manager = connector_manager or KafkaConnectManager()
    action = manager.resume_connector if running else manager.pause_connector
    errors = []

    for connector in pipeline.connectors.all():
        success, error = action(connector.name)
        if not success:
            errors.append({'connector': connector.name, 'error': error})

    pipeline.update_status('running' if running else 'paused')
    logger.info(f"[{pipeline.name}] Pipeline {'resumed' if running else 'paused'}"
                + (f" with {len(errors)} connector errors" if errors else ""))
    return errors


# ==========================================
# Teardown
# ==========================================

@dataclass
class TeardownResult:
    deleted_connectors: List[str] = field(default_factory=list)
    deleted_topics: List[str] = field(default_factory=list)
    dropped_slots: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        payload = {
            'success': True,
            'deletedConnectors': self.deleted_connectors,
            'deletedTopics': self.deleted_topics,
            'droppedSlots': self.dropped_slots,
        }
        if self.errors:
            payload['errors'] = self.errors
        return payload


def source_database_url(config: Dict[str, str]) -> URL:
    host = config.get('database.hostname', 'localhost')
    if host in CLUSTER_ONLY_HOSTS:
        host = 'localhost'
    return URL.create(
        'postgresql+psycopg2',
        username=config.get('database.user'),
        password=config.get('database.password'),
        host=host,
        port=int(config.get('database.port', 5432)),
        database=config.get('database.dbname'),
    )


def drop_replication_slot(config: Dict[str, str]) -> Tuple[bool, Optional[str]]:
    """
    Drop a Postgres source's logical replication slot.

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    slot_name = config.get('slot.name')
    if not slot_name:
        return False, 'No slot.name in config'

    engine = create_engine(source_database_url(config), pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT pg_drop_replication_slot(:slot)"), {'slot': slot_name})
            conn.commit()
        logger.info(f"Dropped replication slot {slot_name}")
        return True, None
    except Exception as e:
        # Slot may already be gone
        logger.warning(f"Failed to drop replication slot {slot_name}: {e}")
        return False, str(e)
    finally:
        engine.dispose()


def teardown_pipeline_connectors(
    pipeline: Pipeline,
    delete_topics: bool = False,
    connector_manager: Optional[KafkaConnectManager] = None,
    topic_manager: Optional[KafkaTopicManager] = None
) -> TeardownResult:
    """
    Remove a pipeline's connectors from Kafka Connect.

    Connector rows stay in the database so the pipeline can be restored.
    With ``delete_topics`` the Postgres replication slot, the data topics and
    the dead-letter topics are removed as well.
    """
    manager = connector_manager or KafkaConnectManager()
    result = TeardownResult()

    for connector in pipeline.connectors.all():
        config = connector.config or {}

        deleted, error = manager.delete_connector(connector.name)
        if deleted:
            result.deleted_connectors.append(connector.name)
        else:
            result.errors.append({'connector': connector.name, 'error': f"Failed to delete: {error}"})

        if not delete_topics:
            continue

        if deleted and connector.is_source and connector_family(config.get('connector.class', '')) == 'postgres' \
                and config.get('slot.name'):
            dropped, _ = drop_replication_slot(config)
            if dropped:
                result.dropped_slots.append(config['slot.name'])

        prefix = config.get('topic.prefix') or config.get('database.server.name')
        if not prefix:
            continue
        try:
            topics = topic_manager or KafkaTopicManager()
            topic_manager = topics
            deleted_topics, topic_errors = topics.delete_topics_matching(
                prefix,
                extra_topics=[dlq_topic_name(pipeline.name, 'source'), dlq_topic_name(pipeline.name, 'sink')],
            )
        except Exception as e:
            logger.warning(f"[{connector.name}] Failed to delete topics (non-fatal): {e}")
            result.errors.append({'connector': connector.name, 'error': f"Topic deletion failed: {e}"})
            continue

        result.deleted_topics.extend(t for t in deleted_topics if t not in result.deleted_topics)
        result.errors.extend({'connector': connector.name, 'error': err} for err in topic_errors)

    logger.info(f"[{pipeline.name}] Connector configs preserved in database for restore")
    return result


# ==========================================
# Retention purge
# ==========================================

def find_expired_pipelines(now=None) -> List[Pipeline]:
    now = now or timezone.now()
    candidates = Pipeline.objects.filter(deleted_at__isnull=False)
    return [p for p in candidates if p.retention_expires_at and p.retention_expires_at <= now]


def purge_expired_pipelines(now=None) -> Dict[str, object]:
    """
    Hard-delete soft-deleted pipelines whose backup retention has passed.

    Connector rows and events go with them through the foreign-key cascade.
    """
    expired = find_expired_pipelines(now)
    if not expired:
        logger.debug("No expired pipelines to purge")
        return {'purged': 0, 'pipelines': []}

    names = []
    for pipeline in expired:
        connector_count = PipelineConnector.objects.filter(pipeline=pipeline).count()
        names.append(pipeline.name)
        pipeline.delete()
        logger.info(f"[{pipeline.name}] Purged expired pipeline ({connector_count} connectors)")

    return {'purged': len(names), 'pipelines': names}
