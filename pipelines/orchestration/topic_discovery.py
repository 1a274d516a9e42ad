"""
Topic discovery and tuning after a source connector is deployed.

The source creates its topics asynchronously, so discovery polls the broker
with exponential backoff until topics under the source's prefix appear or the
attempt budget runs out. Running out is not an error: the sink then keeps its
``topics.regex`` subscription.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from django.conf import settings

from cdcstream.utils.kafka.topic_manager import KafkaTopicManager

logger = logging.getLogger(__name__)


@dataclass
class TopicDiscoveryResult:
    prefix: str
    topics: List[str] = field(default_factory=list)
    attempts: int = 0
    error: Optional[str] = None
    tuning_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return bool(self.topics)

    def to_dict(self) -> dict:
        return {
            'prefix': self.prefix,
            'topics': self.topics,
            'attempts': self.attempts,
            'error': self.error,
            'tuning_errors': self.tuning_errors,
        }


def topic_prefix_for(source_config: Mapping[str, str], pipeline_name: str) -> str:
    return source_config.get('topic.prefix') or source_config.get('database.server.name') or pipeline_name


def _discovery_settings() -> Dict[str, float]:
    defaults = {'INITIAL_DELAY': 1.0, 'BACKOFF_FACTOR': 2.0, 'MAX_ATTEMPTS': 5}
    defaults.update(getattr(settings, 'DEBEZIUM_CONFIG', {}).get('TOPIC_DISCOVERY', {}))
    return defaults


def wait_for_topics(
    topic_manager: KafkaTopicManager,
    prefix: str,
    max_attempts: Optional[int] = None,
    initial_delay: Optional[float] = None,
    backoff_factor: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep
) -> TopicDiscoveryResult:
    """
    Poll the broker until topics for ``prefix`` exist.

    Each attempt sleeps first, since the source was only just submitted.
    """
    config = _discovery_settings()
    max_attempts = int(max_attempts if max_attempts is not None else config['MAX_ATTEMPTS'])
    delay = float(initial_delay if initial_delay is not None else config['INITIAL_DELAY'])
    backoff_factor = float(backoff_factor if backoff_factor is not None else config['BACKOFF_FACTOR'])

    result = TopicDiscoveryResult(prefix=prefix)

    for attempt in range(1, max_attempts + 1):
        sleep(delay)
        result.attempts = attempt
        try:
            topics = topic_manager.find_topics_for_prefix(prefix)
        except Exception as e:
            result.error = f"Failed to list topics: {e}"
            logger.warning(f"[{prefix}] Topic listing failed on attempt {attempt}/{max_attempts}: {e}")
        else:
            if topics:
                result.topics = topics
                result.error = None
                logger.info(f"[{prefix}] Discovered {len(topics)} topics after {attempt} attempt(s)")
                return result
            logger.debug(f"[{prefix}] No topics yet (attempt {attempt}/{max_attempts})")
        delay *= backoff_factor

    logger.warning(f"[{prefix}] No topics discovered after {max_attempts} attempts; sink keeps topics.regex")
    return result


def retarget_sink(sink_config: Mapping[str, str], topics: List[str]) -> Dict[str, str]:
    """Return a sink config subscribed to exactly ``topics`` instead of a regex."""
    retargeted = dict(sink_config)
    if topics:
        retargeted['topics'] = ','.join(topics)
        retargeted.pop('topics.regex', None)
    return retargeted


def discover_topics_for_sink(
    topic_manager: KafkaTopicManager,
    source_config: Mapping[str, str],
    sink_config: Mapping[str, str],
    pipeline_name: str,
    sleep: Callable[[float], None] = time.sleep
) -> Tuple[Dict[str, str], TopicDiscoveryResult]:
    prefix = topic_prefix_for(source_config, pipeline_name)
    result = wait_for_topics(topic_manager, prefix, sleep=sleep)
    return retarget_sink(sink_config, result.topics), result


def tune_topics(topic_manager: KafkaTopicManager, result: TopicDiscoveryResult) -> TopicDiscoveryResult:
    """Switch discovered topics to compaction. Failures are logged, never raised."""
    if not result.topics:
        return result
    try:
        outcome = topic_manager.set_compaction(result.topics)
    except Exception as e:
        logger.warning(f"[{result.prefix}] Could not tune topics: {e}")
        result.tuning_errors = {topic: str(e) for topic in result.topics}
        return result

    result.tuning_errors = {topic: error for topic, error in outcome.items() if error}
    tuned = len(result.topics) - len(result.tuning_errors)
    logger.info(f"[{result.prefix}] Compaction enabled on {tuned}/{len(result.topics)} topics")
    return result
