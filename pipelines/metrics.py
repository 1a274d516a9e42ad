"""
Process metrics for connector orchestration and monitoring
"""
from prometheus_client import Counter, Gauge, Histogram

# ====================================
# DEPLOYMENT METRICS
# ====================================
connector_deployments_total = Counter(
    'cdc_connector_deployments_total',
    'Connector deploy attempts against Kafka Connect',
    ['leg', 'action', 'status']  # leg: source/sink, action: created/updated/restored, status: success/failed
)

deployment_duration = Histogram(
    'cdc_deployment_duration_seconds',
    'Time taken to deploy a pipeline (both legs)',
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, float("inf"))
)

deployment_rollbacks_total = Counter(
    'cdc_deployment_rollbacks_total',
    'Source connectors removed after a failed sink deploy',
)

# ====================================
# MONITORING METRICS
# ====================================
alerts_raised_total = Counter(
    'cdc_alerts_raised_total',
    'Alerts raised or refreshed by the monitoring engine',
    ['alert_type', 'severity']
)

monitoring_cycles_total = Counter(
    'cdc_monitoring_cycles_total',
    'Monitoring cycles by outcome',
    ['outcome']  # completed/skipped/failed
)

monitoring_cycle_duration = Histogram(
    'cdc_monitoring_cycle_duration_seconds',
    'Time taken by one monitoring sweep',
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, float("inf"))
)

monitored_pipelines = Gauge(
    'cdc_monitored_pipelines',
    'Pipelines checked in the most recent monitoring cycle',
)
