"""
Replication slot WAL retention on Postgres sources.

A logical slot pins WAL on the source database until its connector confirms
the changes, so a paused or failing source connector makes the WAL grow.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text

from pipelines.models import PipelineConnector
from pipelines.orchestration.lifecycle import source_database_url
from pipelines.utils.config_normalizer import connector_family, flatten_config

logger = logging.getLogger(__name__)

SLOT_WAL_QUERY = text("""
    SELECT slot_name,
           active,
           COALESCE(pg_wal_lsn_diff(pg_current_wal_lsn(), restart_lsn) / (1024 * 1024), 0) AS wal_size_mb,
           COALESCE(pg_wal_lsn_diff(pg_current_wal_lsn(), confirmed_flush_lsn), 0) AS lag_bytes
    FROM pg_replication_slots
    WHERE slot_name = :slot
""")

# pg_ls_waldir() needs superuser or pg_monitor
WAL_DIR_QUERY = text("""
    SELECT pg_size_pretty(sum((pg_stat_file('pg_wal/' || name)).size)) AS total_size_pretty,
           COALESCE(sum((pg_stat_file('pg_wal/' || name)).size) / (1024 * 1024), 0) AS total_size_mb,
           count(*) AS file_count
    FROM pg_ls_waldir()
""")

EMPTY_WAL_DIR = {'total_size_mb': 0.0, 'total_size_pretty': '0 bytes', 'file_count': 0}


@dataclass
class SlotWal:
    slot_name: str
    active: bool
    wal_size_mb: float
    lag_bytes: int
    physical_wal: Optional[Dict[str, Any]] = None

    @property
    def wal_status(self) -> str:
        return 'streaming' if self.active else 'inactive'

    def slot_dict(self) -> dict:
        return {
            'slot_name': self.slot_name,
            'active': self.active,
            'wal_status': self.wal_status,
            'lag_bytes': self.lag_bytes,
        }


def postgres_source_config(connector: Optional[PipelineConnector]) -> Optional[Dict[str, Any]]:
    """Flat config of a Postgres source connector, or None for any other connector."""
    if connector is None:
        return None
    config = flatten_config(connector.config)
    connector_class = config.get('connector.class') or connector.connector_class or ''
    if connector_family(connector_class) != 'postgres':
        return None
    return config


def slot_name_for(config: Dict[str, Any], pipeline_name: str) -> str:
    return config.get('slot.name') or re.sub(r'[^a-z0-9]+', '_', pipeline_name.lower()) + '_slot'


def read_slot_wal(config: Dict[str, Any], slot_name: str, include_wal_dir: bool = False) -> Optional[SlotWal]:
    """
    Measure the WAL retained by a replication slot.

    Args:
        config: Flat Postgres source connector config
        slot_name: Replication slot to inspect
        include_wal_dir: Also report the size of the pg_wal directory

    Returns:
        SlotWal, or None when the slot does not exist

    Raises:
        SQLAlchemyError: when the source database cannot be queried
    """
    engine = create_engine(source_database_url(config), pool_pre_ping=True, connect_args={'connect_timeout': 5})
    try:
        with engine.connect() as conn:
            row = conn.execute(SLOT_WAL_QUERY, {'slot': slot_name}).mappings().first()
            if row is None:
                return None

            wal = SlotWal(
                slot_name=row['slot_name'],
                active=bool(row['active']),
                wal_size_mb=float(row['wal_size_mb']),
                lag_bytes=int(row['lag_bytes'] or 0),
            )
            if include_wal_dir:
                wal.physical_wal = _read_wal_dir(conn)
            return wal
    finally:
        engine.dispose()


def _read_wal_dir(conn) -> Dict[str, Any]:
    try:
        row = conn.execute(WAL_DIR_QUERY).mappings().first()
    except Exception as e:
        logger.warning(f"Cannot read pg_wal directory size: {e}")
        return dict(EMPTY_WAL_DIR)

    if row is None:
        return dict(EMPTY_WAL_DIR)
    return {
        'total_size_mb': float(row['total_size_mb'] or 0),
        'total_size_pretty': row['total_size_pretty'] or '0 bytes',
        'file_count': int(row['file_count'] or 0),
    }
