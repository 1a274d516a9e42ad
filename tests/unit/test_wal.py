"""
Unit tests for replication slot WAL monitoring.

The source database is never contacted: checks get a fake reader and
``read_slot_wal`` gets a patched SQLAlchemy engine.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from pipelines.models import MonitoringThresholds, Pipeline, PipelineConnector
from pipelines.monitoring.checks import PipelineSnapshot, check_wal_size, run_checks
from pipelines.monitoring.state import MonitorState
from pipelines.monitoring.wal import SlotWal, postgres_source_config, read_slot_wal, slot_name_for
from pipelines.utils.config_normalizer import JDBC_SINK_CONNECTOR, POSTGRES_CONNECTOR
from tests.conftest import connector_status, jdbc_sink_config
from tests.conftest import postgres_source_config as source_config


def make_snapshot(now, status='running', enabled=True, config=None, **pipeline_fields):
    pipeline = Pipeline(id=7, name='orders', status=status, enable_log_monitoring=enabled, **pipeline_fields)
    return PipelineSnapshot(
        pipeline=pipeline,
        thresholds=MonitoringThresholds(),
        now=now,
        source=PipelineConnector(
            name='orders-source',
            type='source',
            connector_class=POSTGRES_CONNECTOR,
            config=config if config is not None else source_config(),
        ),
    )


def wal_reader(wal_size_mb=100.0):
    reader = MagicMock()
    reader.return_value = SlotWal(slot_name='orders-slot', active=True, wal_size_mb=wal_size_mb, lag_bytes=0)
    return reader


@pytest.fixture
def state():
    return MonitorState()


class TestCheckWalSize:
    """Test the WAL retention check."""

    def test_over_threshold_alerts(self, fixed_now, state):
        reader = wal_reader(900.0)

        alerts = check_wal_size(make_snapshot(fixed_now), state, reader)

        assert len(alerts) == 1
        alert = alerts[0]
        assert (alert.alert_type, alert.severity, alert.connector_type) == ('WAL_SIZE_EXCEEDED', 'warning', 'source')
        assert alert.message == 'WAL size 900.00 MB exceeds threshold 819.20 MB (80% of 1024 MB)'
        assert alert.metadata['slot_name'] == 'orders-slot'
        assert alert.metadata['source_database'] == 'shop'
        reader.assert_called_once()
        assert reader.call_args[0][1] == 'orders-slot'

    def test_exactly_threshold_does_not_alert(self, fixed_now, state):
        snapshot = make_snapshot(fixed_now, max_wal_size=1000, alert_threshold=50)

        assert check_wal_size(snapshot, state, wal_reader(500.0)) == []

    def test_custom_limits(self, fixed_now, state):
        snapshot = make_snapshot(fixed_now, max_wal_size=200, alert_threshold=50)

        alerts = check_wal_size(snapshot, state, wal_reader(100.5))

        assert alerts[0].metadata['threshold_mb'] == 100

    def test_runs_once_per_interval(self, fixed_now, state):
        reader = wal_reader(900.0)

        first = check_wal_size(make_snapshot(fixed_now), state, reader)
        early = check_wal_size(make_snapshot(fixed_now + timedelta(seconds=59)), state, reader)
        due = check_wal_size(make_snapshot(fixed_now + timedelta(seconds=60)), state, reader)

        assert len(first) == 1
        assert early == []
        assert len(due) == 1
        assert reader.call_count == 2

    def test_per_pipeline_interval(self, fixed_now, state):
        reader = wal_reader()
        check_wal_size(make_snapshot(fixed_now, wal_check_interval_seconds=300), state, reader)

        check_wal_size(make_snapshot(fixed_now + timedelta(seconds=120), wal_check_interval_seconds=300), state, reader)

        assert reader.call_count == 1

    def test_disabled_pipeline_is_skipped(self, fixed_now, state):
        reader = wal_reader(900.0)

        assert check_wal_size(make_snapshot(fixed_now, enabled=False), state, reader) == []
        reader.assert_not_called()
        assert state.last_wal_check == {}

    def test_non_postgres_source_is_skipped(self, fixed_now, state):
        reader = wal_reader(900.0)
        snapshot = make_snapshot(fixed_now, config={'connector.class': 'io.debezium.connector.mysql.MySqlConnector'})

        assert check_wal_size(snapshot, state, reader) == []
        reader.assert_not_called()

    def test_unreachable_database_is_noop(self, fixed_now, state):
        reader = MagicMock(side_effect=Exception('could not connect to server'))

        assert check_wal_size(make_snapshot(fixed_now), state, reader) == []
        assert state.last_wal_check == {7: fixed_now}

    def test_missing_slot_is_noop(self, fixed_now, state):
        assert check_wal_size(make_snapshot(fixed_now), state, MagicMock(return_value=None)) == []

    def test_paused_pipeline_is_checked(self, fixed_now, state):
        snapshot = make_snapshot(fixed_now, status='paused')
        snapshot.statuses = {'source': connector_status('PAUSED')}

        alerts = run_checks(snapshot, MagicMock(), state, wal_reader(900.0))

        assert [a.alert_type for a in alerts] == ['WAL_SIZE_EXCEEDED']


class TestWalHelpers:
    """Test source detection and slot naming."""

    def test_postgres_source_config_flattens(self):
        connector = PipelineConnector(
            type='source',
            connector_class=POSTGRES_CONNECTOR,
            config={'connection': {'database.hostname': 'db'}, 'slot.name': 's'},
        )

        assert postgres_source_config(connector) == {'database.hostname': 'db', 'slot.name': 's'}

    def test_sink_is_not_a_postgres_source(self):
        connector = PipelineConnector(type='sink', connector_class=JDBC_SINK_CONNECTOR, config=jdbc_sink_config())

        assert postgres_source_config(connector) is None
        assert postgres_source_config(None) is None

    def test_slot_name_fallback(self):
        assert slot_name_for({'slot.name': 'orders-slot'}, 'Orders') == 'orders-slot'
        assert slot_name_for({}, 'Orders Pipeline-1') == 'orders_pipeline_1_slot'


class TestReadSlotWal:
    """Test the pg_replication_slots query."""

    SLOT_ROW = {'slot_name': 'orders-slot', 'active': True, 'wal_size_mb': 12.5, 'lag_bytes': 2048}

    @patch('pipelines.monitoring.wal.create_engine')
    def test_reads_slot(self, create_engine):
        conn = create_engine.return_value.connect.return_value.__enter__.return_value
        conn.execute.return_value.mappings.return_value.first.return_value = self.SLOT_ROW

        wal = read_slot_wal(source_config(), 'orders-slot')

        assert (wal.wal_size_mb, wal.lag_bytes, wal.wal_status) == (12.5, 2048, 'streaming')
        assert wal.physical_wal is None
        assert conn.execute.call_args[0][1] == {'slot': 'orders-slot'}
        create_engine.return_value.dispose.assert_called_once()

    @patch('pipelines.monitoring.wal.create_engine')
    def test_missing_slot(self, create_engine):
        conn = create_engine.return_value.connect.return_value.__enter__.return_value
        conn.execute.return_value.mappings.return_value.first.return_value = None

        assert read_slot_wal(source_config(), 'orders-slot') is None

    @patch('pipelines.monitoring.wal.create_engine')
    def test_wal_dir_included(self, create_engine):
        conn = create_engine.return_value.connect.return_value.__enter__.return_value
        slot_result, dir_result = MagicMock(), MagicMock()
        slot_result.mappings.return_value.first.return_value = self.SLOT_ROW
        dir_result.mappings.return_value.first.return_value = {
            'total_size_pretty': '48 MB', 'total_size_mb': 48.0, 'file_count': 3,
        }
        conn.execute.side_effect = [slot_result, dir_result]

        wal = read_slot_wal(source_config(), 'orders-slot', include_wal_dir=True)

        assert wal.physical_wal == {'total_size_mb': 48.0, 'total_size_pretty': '48 MB', 'file_count': 3}

    @patch('pipelines.monitoring.wal.create_engine')
    def test_wal_dir_permission_denied(self, create_engine):
        conn = create_engine.return_value.connect.return_value.__enter__.return_value
        slot_result = MagicMock()
        slot_result.mappings.return_value.first.return_value = self.SLOT_ROW
        conn.execute.side_effect = [slot_result, Exception('permission denied for function pg_ls_waldir')]

        wal = read_slot_wal(source_config(), 'orders-slot', include_wal_dir=True)

        assert wal.physical_wal == {'total_size_mb': 0.0, 'total_size_pretty': '0 bytes', 'file_count': 0}

    @patch('pipelines.monitoring.wal.create_engine')
    def test_connection_failure_propagates(self, create_engine):
        create_engine.return_value.connect.side_effect = Exception('could not connect to server')

        with pytest.raises(Exception, match='could not connect'):
            read_slot_wal(source_config(), 'orders-slot')
        create_engine.return_value.dispose.assert_called_once()
