"""
Unit tests for restoring a soft-deleted pipeline.
"""

from datetime import datetime

import pytest

from pipelines.models import Pipeline, PipelineEvent
from pipelines.orchestration.restore import NothingToRestore, PipelineRestorer, rename_for_restore
from pipelines.utils.config_normalizer import JDBC_SINK_CONNECTOR, POSTGRES_CONNECTOR
from tests.conftest import postgres_source_config

RESTORE_DAY = datetime(2026, 3, 2, 9, 30)


def make_restorer(pipeline, connector_manager, fixed_now):
    return PipelineRestorer(
        pipeline,
        connector_manager=connector_manager,
        clock=lambda: fixed_now,
        sleep=lambda seconds: None,
    )


class TestRenameForRestore:
    """Test the identity change given to restored Postgres sources."""

    def test_postgres_source_is_renamed(self):
        renamed = rename_for_restore(postgres_source_config(), RESTORE_DAY)

        assert renamed['slot.name'] == 'orders-slot_restore'
        assert renamed['database.server.name'] == 'orders_res_20260302'
        assert renamed['snapshot.mode'] == 'always'

    def test_suffixes_applied_once(self):
        once = rename_for_restore(postgres_source_config(), RESTORE_DAY)
        twice = rename_for_restore(once, datetime(2026, 4, 1))

        assert twice['slot.name'] == 'orders-slot_restore'
        assert twice['database.server.name'] == 'orders_res_20260302'

    def test_input_not_mutated(self):
        config = postgres_source_config()

        rename_for_restore(config, RESTORE_DAY)

        assert config['slot.name'] == 'orders-slot'

    def test_non_postgres_untouched(self):
        config = {'connector.class': JDBC_SINK_CONNECTOR, 'topics.regex': 'orders\\..*'}

        assert rename_for_restore(config, RESTORE_DAY) == config


@pytest.mark.django_db
class TestPipelineRestorer:
    """Test re-creation of every stored connector."""

    def test_restores_all_connectors(self, pipeline, connector_manager, fixed_now):
        pipeline.soft_delete()

        result = make_restorer(pipeline, connector_manager, fixed_now).restore()

        assert result.success
        assert result.complete
        assert sorted(result.deployed) == ['orders-sink', 'orders-source']
        assert result.to_dict()['message'] == 'Restored 2/2 connectors'

        pipeline.refresh_from_db()
        assert pipeline.status == 'running'
        assert pipeline.deleted_at is None
        assert pipeline.restore_count == 1

    def test_source_config_persisted_renamed(self, pipeline, connector_manager, fixed_now):
        make_restorer(pipeline, connector_manager, fixed_now).restore()

        calls = {c[0][0]: c[0][1] for c in connector_manager.create_connector.call_args_list}
        assert calls['orders-source']['slot.name'] == 'orders-slot_restore'
        assert calls['orders-source']['connector.class'] == POSTGRES_CONNECTOR
        assert 'snapshot.mode' not in calls['orders-sink']

        source = pipeline.connectors.get(type='source')
        assert source.config['slot.name'] == 'orders-slot_restore'
        assert source.status == 'running'

    def test_existing_connector_removed_first(self, pipeline, connector_manager, fixed_now):
        connector_manager.connector_exists.return_value = (True, None)

        make_restorer(pipeline, connector_manager, fixed_now).restore()

        deleted = sorted(c[0][0] for c in connector_manager.delete_connector.call_args_list)
        assert deleted == ['orders-sink', 'orders-source']
        assert connector_manager.delete_connector_offsets.call_count == 2

    def test_unsupported_offset_reset_is_tolerated(self, pipeline, connector_manager, fixed_now):
        connector_manager.connector_exists.return_value = (True, None)
        connector_manager.delete_connector_offsets.return_value = (False, 'HTTP 404: Not Found')

        result = make_restorer(pipeline, connector_manager, fixed_now).restore()

        assert result.complete

    def test_partial_failure(self, pipeline, connector_manager, fixed_now):
        connector_manager.create_connector.side_effect = lambda name, config: (
            (False, 'HTTP 500: boom') if name == 'orders-sink' else (True, None)
        )

        result = make_restorer(pipeline, connector_manager, fixed_now).restore()

        assert result.success
        assert not result.complete
        assert result.errors == [{'connector': 'orders-sink', 'error': 'Kafka Connect error: HTTP 500: boom'}]
        pipeline.refresh_from_db()
        assert pipeline.status == 'error'
        assert PipelineEvent.objects.get(pipeline=pipeline).event_status == 'failed'

    def test_total_failure(self, pipeline, connector_manager, fixed_now):
        connector_manager.create_connector.return_value = (False, 'HTTP 500: boom')

        result = make_restorer(pipeline, connector_manager, fixed_now).restore()

        assert not result.success
        assert result.to_dict()['success'] is False

    def test_nothing_to_restore(self, db, connector_manager, fixed_now):
        empty = Pipeline.objects.create(name='empty', status='deleted')

        with pytest.raises(NothingToRestore):
            make_restorer(empty, connector_manager, fixed_now).restore()

    def test_second_restore_does_not_stack_suffixes(self, pipeline, connector_manager, fixed_now):
        make_restorer(pipeline, connector_manager, fixed_now).restore()
        make_restorer(pipeline, connector_manager, fixed_now).restore()

        source = pipeline.connectors.get(type='source')
        assert source.config['slot.name'] == 'orders-slot_restore'
        pipeline.refresh_from_db()
        assert pipeline.restore_count == 2
