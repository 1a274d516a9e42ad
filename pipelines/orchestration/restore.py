"""
Pipeline Restorer - brings a soft-deleted pipeline's connectors back.

Any connector still registered under the same name is deleted first, along
with its stored offsets where Kafka Connect supports that. Postgres sources
are given a fresh replication slot and server name and forced to take a full
snapshot so they never resume from stale state.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from django.utils import timezone

from cdcstream.utils.connect.connector_manager import KafkaConnectManager
from pipelines.logging_utils import log_operation, pipeline_logger
from pipelines.metrics import connector_deployments_total
from pipelines.models import Pipeline, PipelineConnector, PipelineEvent
from pipelines.utils.config_normalizer import connector_family

logger = logging.getLogger(__name__)

SLOT_RESTORE_SUFFIX = '_restore'
SERVER_NAME_RESTORE_PATTERN = re.compile(r'_res_\d{8}$')


class NothingToRestore(Exception):
    """Pipeline has no stored connectors"""
    pass


@dataclass
class RestoreResult:
    total: int
    deployed: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.deployed) > 0

    @property
    def complete(self) -> bool:
        return len(self.deployed) == self.total

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'deployed': self.deployed,
            'errors': self.errors,
            'message': f"Restored {len(self.deployed)}/{self.total} connectors",
        }


def rename_for_restore(config: Dict[str, str], today: datetime) -> Dict[str, str]:
    """
    Give a Postgres source a non-colliding identity.

    Suffixes are only added once, so restoring an already restored
    pipeline does not stack them.
    """
    renamed = dict(config)
    if connector_family(renamed.get('connector.class', '')) != 'postgres':
        return renamed

    slot_name = renamed.get('slot.name')
    if slot_name and not slot_name.endswith(SLOT_RESTORE_SUFFIX):
        renamed['slot.name'] = f"{slot_name}{SLOT_RESTORE_SUFFIX}"

    server_name = renamed.get('database.server.name')
    if server_name and not SERVER_NAME_RESTORE_PATTERN.search(server_name):
        renamed['database.server.name'] = f"{server_name}_res_{today.strftime('%Y%m%d')}"

    renamed['snapshot.mode'] = 'always'
    return renamed


class PipelineRestorer:
    """Re-creates every stored connector of a pipeline"""

    def __init__(
        self,
        pipeline: Pipeline,
        connector_manager: Optional[KafkaConnectManager] = None,
        clock: Callable[[], datetime] = timezone.now,
        sleep: Callable[[float], None] = time.sleep,
        settle_seconds: float = 1.0
    ):
        self.pipeline = pipeline
        self.connector_manager = connector_manager or KafkaConnectManager()
        self.clock = clock
        self.sleep = sleep
        self.settle_seconds = settle_seconds

    def _log_info(self, message: str):
        logger.info(f"[{self.pipeline.name}] {message}")

    def _log_warning(self, message: str):
        logger.warning(f"[{self.pipeline.name}] {message}")

    def restore(self) -> RestoreResult:
        """
        Raises:
            NothingToRestore: the pipeline has no stored connectors
        """
        connectors = list(self.pipeline.connectors.all())
        if not connectors:
            raise NothingToRestore('No connectors found for this pipeline')

        self._log_info("=" * 60)
        self._log_info("RESTORING PIPELINE")
        self._log_info("=" * 60)

        result = RestoreResult(total=len(connectors))
        today = self.clock()

        with log_operation(pipeline_logger, 'pipeline_restore', pipeline_id=self.pipeline.pk):
            for connector in connectors:
                try:
                    self._restore_connector(connector, today, result)
                except Exception as e:
                    logger.error(f"[{connector.name}] Restore failed: {e}", exc_info=True)
                    result.errors.append({'connector': connector.name, 'error': str(e)})

        self.pipeline.mark_restored()
        self.pipeline.update_status('running' if result.complete else 'error')

        PipelineEvent.objects.create(
            pipeline=self.pipeline,
            event_type='info' if result.complete else 'error',
            event_status='completed' if result.complete else 'failed',
            message=result.to_dict()['message'],
            metadata={'deployed': result.deployed, 'errors': result.errors},
        )
        self._log_info(result.to_dict()['message'])
        return result

    def _restore_connector(self, connector: PipelineConnector, today: datetime, result: RestoreResult):
        self._remove_existing(connector.name)

        config = rename_for_restore(connector.config or {}, today)
        if config.get('slot.name') != (connector.config or {}).get('slot.name'):
            self._log_info(f"  → {connector.name}: slot.name -> {config['slot.name']}")

        success, error = self.connector_manager.create_connector(connector.name, config)
        connector_deployments_total.labels(
            leg=connector.type, action='restored', status='success' if success else 'failed'
        ).inc()
        if not success:
            result.errors.append({'connector': connector.name, 'error': f"Kafka Connect error: {error}"})
            return

        result.deployed.append(connector.name)
        connector.config = config
        connector.status = 'running'
        connector.save(update_fields=['config', 'status', 'updated_at'])
        self._log_info(f"  ✓ {connector.name} redeployed")

    def _remove_existing(self, name: str):
        exists, error = self.connector_manager.connector_exists(name)
        if exists is None:
            self._log_warning(f"Could not check for existing connector {name}: {error}")
            return
        if not exists:
            return

        self._log_info(f"  → Found existing connector {name}, deleting it and its offsets")
        deleted, error = self.connector_manager.delete_connector(name)
        if not deleted:
            self._log_warning(f"Could not delete existing connector {name}: {error}")
            return

        self.sleep(self.settle_seconds)
        cleared, error = self.connector_manager.delete_connector_offsets(name)
        if not cleared:
            self._log_warning(f"Could not delete offsets for {name} (may be unsupported): {error}")
