"""
Orchestration module - drives a pipeline's source/sink connector pair.

- PipelineDeployer: source-then-sink deploy with rollback of the source
- ConnectorStatusAggregator: concurrent status fetches and derived progress
- PipelineRestorer: re-creates a soft-deleted pipeline's connectors
- lifecycle: start/pause, connector teardown and retention purge
"""

from .deployer import PipelineDeployer, DeploymentValidationError, PendingConfigError, deploy_pending_config
from .status import ConnectorStatusAggregator, build_progress
from .restore import PipelineRestorer, NothingToRestore

__all__ = [
    'PipelineDeployer',
    'DeploymentValidationError',
    'PendingConfigError',
    'deploy_pending_config',
    'ConnectorStatusAggregator',
    'build_progress',
    'PipelineRestorer',
    'NothingToRestore',
]
