"""
Proactive pipeline monitoring.

- engine.py: periodic sweep over running/paused pipelines
- checks.py: per-pipeline health checks producing alert candidates
- state.py: cross-cycle pause, throughput and WAL-check memory
- wal.py: replication slot WAL retention on Postgres sources
- alerts.py: deduplicated alert persistence and operator resolution
- reports.py: dashboard activity, monitoring, log and state-change reports
"""
