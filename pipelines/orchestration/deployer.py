"""
Pipeline Deployer - deploys a pipeline's source and sink connectors as a unit.

Flow:
    VALIDATING -> DEPLOYING_SOURCE -> DEPLOYING_SINK -> TUNING -> COMMITTED

Failure edges:
    DEPLOYING_SOURCE -> FAILED
    DEPLOYING_SINK -> ROLLING_BACK_SOURCE -> FAILED

The source row is persisted as soon as the source deploy succeeds. A later
sink failure removes the source from Kafka Connect but leaves that row in
place, so the database keeps a record of the attempt.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from django.db import DatabaseError
from django.utils import timezone

from cdcstream.utils.connect.connector_manager import ConnectorDeploymentException, KafkaConnectManager
from cdcstream.utils.kafka.topic_manager import KafkaTopicManager
from pipelines.logging_utils import log_operation, pipeline_logger
from pipelines.metrics import connector_deployments_total, deployment_duration, deployment_rollbacks_total
from pipelines.models import ConnectorVersion, Pipeline, PipelineConnector, PipelineEvent
from pipelines.utils.config_normalizer import NormalizationError, normalize_connector_config
from .topic_discovery import TopicDiscoveryResult, discover_topics_for_sink, tune_topics

logger = logging.getLogger(__name__)

MASKED_VALUE = '********'
SENSITIVE_FIELDS = (
    'connection.password',
    'database.password',
    'password',
    'jaas.config',
    'apikey',
    'api.key',
    'secret',
    'token',
    'auth.token',
)


class DeploymentValidationError(Exception):
    """Pipeline cannot be deployed in its current state (maps to HTTP 422)"""
    pass


class PendingConfigError(Exception):
    """Connector has no staged config to deploy (maps to HTTP 400)"""
    pass


class DeployState(str, Enum):
    VALIDATING = 'validating'
    DEPLOYING_SOURCE = 'deploying_source'
    DEPLOYING_SINK = 'deploying_sink'
    ROLLING_BACK_SOURCE = 'rolling_back_source'
    TUNING = 'tuning'
    COMMITTED = 'committed'
    FAILED = 'failed'


@dataclass
class LegResult:
    connector: str
    success: bool = False
    action: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'connector': self.connector,
            'success': self.success,
            'action': self.action,
            'error': self.error,
        }


@dataclass
class DeploymentResult:
    pipeline_name: str
    source: LegResult
    sink: LegResult
    state: DeployState = DeployState.VALIDATING
    rolled_back: bool = False
    topics: Optional[TopicDiscoveryResult] = None
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == DeployState.COMMITTED and not self.errors

    def add_error(self, leg: str, connector: str, error: str):
        self.errors.append({'type': leg, 'connector': connector, 'error': error})

    def to_dict(self) -> dict:
        if self.success:
            message = f"Pipeline {self.pipeline_name} deployed successfully"
        else:
            message = f"Pipeline {self.pipeline_name} deployment failed"
        return {
            'success': self.success,
            'message': message,
            'state': self.state.value,
            'results': {
                'source': self.source.to_dict(),
                'sink': self.sink.to_dict(),
                'errors': self.errors,
                'rolled_back': self.rolled_back,
                'topics': self.topics.to_dict() if self.topics else None,
            },
        }


def resolve_registry_config(stored_config: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[int]]:
    """
    Swap a registry reference for the registry's latest active config.

    Returns:
        Tuple[Dict, Optional[int]]: (config_to_deploy, registry_version)
    """
    registry_name = (stored_config or {}).get('registry_connector')
    if not registry_name:
        return stored_config, None

    try:
        version = (
            ConnectorVersion.objects
            .filter(registered_connector__name=registry_name, is_active=True)
            .order_by('-version')
            .first()
        )
    except DatabaseError as e:
        logger.warning(f"Failed to fetch config for '{registry_name}' from registry, using stored config: {e}")
        return stored_config, None

    if version is None or not version.config:
        logger.warning(f"No active version of '{registry_name}' in registry, using stored config")
        return stored_config, None

    logger.info(f"Using registry config '{registry_name}' v{version.version}")
    return version.config, version.version


def restore_masked_fields(pending: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    """Replace masked secrets in a staged config with the deployed values."""
    merged = dict(pending)
    for key in SENSITIVE_FIELDS:
        if merged.get(key) == MASKED_VALUE and current.get(key):
            merged[key] = current[key]
            logger.debug(f"Restored masked field '{key}' from current config")
    return merged


def deploy_pending_config(
    connector: PipelineConnector,
    connector_manager: Optional[KafkaConnectManager] = None
) -> Dict[str, Any]:
    """
    Push a connector's staged config to Kafka Connect.

    Raises:
        PendingConfigError: nothing is staged
        ConnectorDeploymentException: Kafka Connect rejected the config
    """
    if not connector.has_pending_changes or not connector.pending_config:
        raise PendingConfigError('No pending changes to deploy')

    config = restore_masked_fields(connector.pending_config, connector.config or {})
    manager = connector_manager or KafkaConnectManager()

    success, action, error = manager.deploy_connector(connector.name, config)
    connector_deployments_total.labels(
        leg=connector.type, action=action or 'unknown', status='success' if success else 'failed'
    ).inc()
    if not success:
        raise ConnectorDeploymentException(error or f"Failed to deploy {connector.name}")

    connector.config = config
    connector.pending_config = None
    connector.has_pending_changes = False
    connector.last_deployed_at = timezone.now()
    connector.save(update_fields=['config', 'pending_config', 'has_pending_changes', 'last_deployed_at', 'updated_at'])

    logger.info(f"[{connector.name}] Pending config deployed ({action})")
    return {
        'success': True,
        'message': f"Connector {connector.name} config deployed successfully",
        'action': action,
    }


class PipelineDeployer:
    """
    Deploys both legs of a pipeline.

    Collaborators are injectable so tests can run without Kafka:

        deployer = PipelineDeployer(pipeline, connector_manager=mock_mgr,
                                    topic_manager=mock_topics, sleep=lambda s: None)
    """

    def __init__(
        self,
        pipeline: Pipeline,
        connector_manager: Optional[KafkaConnectManager] = None,
        topic_manager: Optional[KafkaTopicManager] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.pipeline = pipeline
        self.connector_manager = connector_manager or KafkaConnectManager()
        self._topic_manager = topic_manager
        self.sleep = sleep
        self.state = DeployState.VALIDATING
        self.transitions: List[DeployState] = [DeployState.VALIDATING]

    @property
    def topic_manager(self) -> KafkaTopicManager:
        if self._topic_manager is None:
            self._topic_manager = KafkaTopicManager()
        return self._topic_manager

    @property
    def source_name(self) -> str:
        return f"{self.pipeline.name}-source"

    @property
    def sink_name(self) -> str:
        return f"{self.pipeline.name}-sink"

    # ==========================================
    # Logging helpers
    # ==========================================

    def _log_info(self, message: str):
        logger.info(f"[{self.pipeline.name}] {message}")

    def _log_warning(self, message: str):
        logger.warning(f"[{self.pipeline.name}] {message}")

    def _log_error(self, message: str):
        logger.error(f"[{self.pipeline.name}] {message}")

    def _transition(self, state: DeployState):
        self.state = state
        self.transitions.append(state)
        logger.debug(f"[{self.pipeline.name}] deploy state -> {state.value}")

    # ==========================================
    # Validation
    # ==========================================

    def validate(self) -> Tuple[PipelineConnector, PipelineConnector]:
        if self.pipeline.status == 'draft':
            raise DeploymentValidationError('Cannot deploy draft pipeline. Please complete setup.')

        connectors = {c.type: c for c in self.pipeline.connectors.all()}
        source, sink = connectors.get('source'), connectors.get('sink')
        if source is None or sink is None or not source.config or not sink.config:
            raise DeploymentValidationError('Pipeline missing source or sink configuration')
        return source, sink

    # ==========================================
    # Deploy
    # ==========================================

    def deploy(self) -> DeploymentResult:
        """
        Deploy source then sink.

        Returns:
            DeploymentResult describing both legs

        Raises:
            DeploymentValidationError: before anything is touched
        """
        source_row, sink_row = self.validate()

        result = DeploymentResult(
            pipeline_name=self.pipeline.name,
            source=LegResult(connector=self.source_name),
            sink=LegResult(connector=self.sink_name),
        )

        self._log_info("=" * 60)
        self._log_info("DEPLOYING PIPELINE")
        self._log_info("=" * 60)

        with log_operation(pipeline_logger, 'pipeline_deploy', pipeline_id=self.pipeline.pk), deployment_duration.time():
            self._run(source_row, sink_row, result)

        if result.success:
            self.pipeline.update_status('running')
            self._record_event('info', 'completed', f"Pipeline deployed: {self.source_name}, {self.sink_name}")
            self._log_info("✓ Pipeline deployed")
        else:
            self.pipeline.update_status('error')
            self._record_event('error', 'failed', 'Pipeline deployment failed', {'errors': result.errors})
            self._log_error(f"Deployment failed: {result.errors}")

        result.state = self.state
        return result

    def _run(self, source_row: PipelineConnector, sink_row: PipelineConnector, result: DeploymentResult):
        restore_count = self.pipeline.restore_count

        source_raw, source_version = resolve_registry_config(source_row.config)
        sink_raw, sink_version = resolve_registry_config(sink_row.config)

        try:
            source_config = normalize_connector_config(
                source_raw, self.source_name, self.pipeline.name, 'source', restore_count
            )
        except NormalizationError as e:
            result.source.error = str(e)
            self._fail(result, 'source', str(e))
            return
        try:
            sink_config = normalize_connector_config(
                sink_raw, self.sink_name, self.pipeline.name, 'sink', restore_count
            )
        except NormalizationError as e:
            result.sink.error = str(e)
            self._fail(result, 'sink', str(e))
            return

        # STEP 1/3: source
        self._transition(DeployState.DEPLOYING_SOURCE)
        self._log_info(f"STEP 1/3: Deploying source connector {self.source_name}")
        if not self._deploy_leg('source', source_config, source_row, source_version, result.source):
            self._fail(result, 'source', result.source.error)
            return

        # STEP 2/3: topic discovery + sink
        self._transition(DeployState.DEPLOYING_SINK)
        self._log_info("STEP 2/3: Waiting for source topics and deploying sink connector")
        sink_config, discovery = discover_topics_for_sink(
            self.topic_manager, source_config, sink_config, self.pipeline.name, sleep=self.sleep
        )
        result.topics = discovery
        if discovery.found:
            self._log_info(f"  → Sink subscribed to {len(discovery.topics)} discovered topics")
        else:
            self._log_warning("  → No topics discovered; sink keeps topics.regex")

        if not self._deploy_leg('sink', sink_config, sink_row, sink_version, result.sink):
            self._rollback_source(result)
            self._fail(result, 'sink', result.sink.error)
            return

        # STEP 3/3: tuning
        self._transition(DeployState.TUNING)
        self._log_info("STEP 3/3: Enabling compaction on discovered topics")
        tune_topics(self.topic_manager, discovery)

        self._transition(DeployState.COMMITTED)

    def _deploy_leg(
        self,
        leg: str,
        config: Dict[str, str],
        row: PipelineConnector,
        registry_version: Optional[int],
        leg_result: LegResult
    ) -> bool:
        success, action, error = self.connector_manager.deploy_connector(leg_result.connector, config)
        leg_result.success = success
        leg_result.action = action
        leg_result.error = error
        connector_deployments_total.labels(
            leg=leg, action=action or 'unknown', status='success' if success else 'failed'
        ).inc()

        if not success:
            self._log_error(f"✗ {leg} connector {leg_result.connector} failed: {error}")
            return False

        self._persist_connector(leg, leg_result.connector, config, registry_version)
        self._log_info(f"✓ {leg} connector {leg_result.connector} {action}")
        return True

    def _persist_connector(self, leg: str, name: str, config: Dict[str, str], registry_version: Optional[int]):
        defaults = {
            'name': name,
            'connector_class': config.get('connector.class', ''),
            'config': config,
            'status': 'running',
            'last_deployed_at': timezone.now(),
        }
        if registry_version is not None:
            defaults['last_deployed_version'] = registry_version
        PipelineConnector.objects.update_or_create(pipeline=self.pipeline, type=leg, defaults=defaults)

    def _rollback_source(self, result: DeploymentResult):
        self._transition(DeployState.ROLLING_BACK_SOURCE)
        self._log_warning(f"Rolling back source connector {self.source_name}")
        deleted, error = self.connector_manager.delete_connector(self.source_name)
        if deleted:
            result.rolled_back = True
            deployment_rollbacks_total.inc()
        else:
            self._log_error(f"Rollback of {self.source_name} failed: {error}")

    def _fail(self, result: DeploymentResult, leg: str, error: Optional[str]):
        connector = self.source_name if leg == 'source' else self.sink_name
        result.add_error(leg, connector, error or 'Unknown error')
        self._transition(DeployState.FAILED)

    def _record_event(self, event_type: str, event_status: str, message: str, metadata: Optional[dict] = None):
        PipelineEvent.objects.create(
            pipeline=self.pipeline,
            event_type=event_type,
            event_status=event_status,
            message=message,
            metadata=metadata or {},
        )
