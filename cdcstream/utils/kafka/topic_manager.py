"""
Kafka Topic Management Utilities

Lists, tunes and deletes the topics that CDC source connectors materialize.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from confluent_kafka.admin import AdminClient, AlterConfigOpType, ConfigEntry, ConfigResource, ResourceType
from django.conf import settings

logger = logging.getLogger(__name__)


def topic_matches_prefix(topic: str, prefix: str) -> bool:
    """A topic belongs to a source when it is the prefix itself or lives under ``prefix.``"""
    return topic == prefix or topic.startswith(f"{prefix}.")


class KafkaTopicManager:
    """Manage Kafka topics with configuration from Django settings"""

    def __init__(self, bootstrap_servers: Optional[str] = None, admin_client: Optional[AdminClient] = None):
        """
        Initialize Kafka Topic Manager

        Args:
            bootstrap_servers: Kafka bootstrap servers (defaults to settings)
            admin_client: Pre-built admin client, mainly for tests
        """
        self.bootstrap_servers = bootstrap_servers or settings.DEBEZIUM_CONFIG.get(
            'KAFKA_BOOTSTRAP_SERVERS', 'localhost:9092'
        )
        self.admin_client = admin_client or AdminClient({'bootstrap.servers': self.bootstrap_servers})
        self.config = getattr(settings, 'KAFKA_TOPIC_CONFIG', {})

    def list_topics(self, prefix: Optional[str] = None) -> List[str]:
        """
        List all topics in Kafka cluster

        Args:
            prefix: Optional prefix to filter topics

        Returns:
            List of topic names

        Raises:
            KafkaException: when the broker cannot be reached
        """
        metadata = self.admin_client.list_topics(timeout=10)
        topics = list(metadata.topics.keys())

        if prefix:
            topics = [t for t in topics if t.startswith(prefix)]

        logger.debug(f"Found {len(topics)} topics" + (f" with prefix '{prefix}'" if prefix else ""))
        return topics

    def find_topics_for_prefix(self, prefix: str) -> List[str]:
        """Return sorted topics equal to ``prefix`` or starting with ``prefix.``"""
        return sorted(t for t in self.list_topics() if topic_matches_prefix(t, prefix))

    def topic_exists(self, topic_name: str) -> bool:
        try:
            metadata = self.admin_client.list_topics(timeout=10)
            return topic_name in metadata.topics
        except Exception as e:
            logger.error(f"Failed to check topic existence: {e}")
            return False

    def set_topic_configs(self, topics: Iterable[str], overrides: Dict[str, str]) -> Dict[str, Optional[str]]:
        """
        Incrementally set config entries on each topic, leaving other
        per-topic overrides untouched.

        Returns:
            Dict mapping topic name to None on success or an error message
        """
        resources = []
        for topic in topics:
            entries = [
                ConfigEntry(key, str(value), incremental_operation=AlterConfigOpType.SET)
                for key, value in overrides.items()
            ]
            resources.append(ConfigResource(ResourceType.TOPIC, topic, incremental_configs=entries))

        if not resources:
            return {}

        results: Dict[str, Optional[str]] = {}
        futures = self.admin_client.incremental_alter_configs(resources)
        for resource, future in futures.items():
            try:
                future.result()
                results[resource.name] = None
            except Exception as e:
                results[resource.name] = str(e)
                logger.warning(f"Failed to alter config of topic '{resource.name}': {e}")
        return results

    def set_compaction(self, topics: Iterable[str]) -> Dict[str, Optional[str]]:
        """Switch topics to log compaction with a short tombstone retention."""
        overrides = self.config or {'cleanup.policy': 'compact', 'delete.retention.ms': '100'}
        return self.set_topic_configs(topics, overrides)

    def delete_topics(self, topic_names: List[str]) -> Dict[str, Optional[str]]:
        """
        Delete topics and all their messages.

        WARNING: This is a destructive operation. All messages are lost permanently.

        Returns:
            Dict mapping topic name to None on success or an error message
        """
        if not topic_names:
            return {}

        results: Dict[str, Optional[str]] = {}
        futures = self.admin_client.delete_topics(list(topic_names), request_timeout=30)
        for topic, future in futures.items():
            try:
                future.result()
                logger.info(f"Deleted topic: {topic}")
                results[topic] = None
            except Exception as e:
                logger.error(f"Failed to delete topic {topic}: {e}")
                results[topic] = str(e)
        return results

    def delete_topics_matching(
        self,
        prefix: str,
        extra_topics: Iterable[str] = ()
    ) -> Tuple[List[str], List[str]]:
        """
        Delete every topic that starts with or contains ``prefix`` plus any
        of ``extra_topics`` that exist (dead-letter queues, history topics).

        Returns:
            Tuple[List[str], List[str]]: (deleted_topics, errors)
        """
        logger.info("=" * 60)
        logger.info(f"DELETING KAFKA TOPICS FOR PREFIX '{prefix}' (DESTRUCTIVE)")
        logger.info("=" * 60)

        existing = self.list_topics()
        extras = set(extra_topics)
        targets = sorted(t for t in existing if t.startswith(prefix) or prefix in t or t in extras)

        if not targets:
            logger.info("No topics found to delete")
            return [], []

        results = self.delete_topics(targets)
        deleted = [t for t, err in results.items() if err is None]
        errors = [f"Failed to delete topic {t}: {err}" for t, err in results.items() if err is not None]

        logger.info(f"Summary: {len(deleted)} deleted, {len(errors)} failed")
        logger.info("=" * 60)
        return deleted, errors
