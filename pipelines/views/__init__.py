"""
Pipelines API views.

- pipeline_views.py: deploy, lifecycle, status and reports of a pipeline
- connector_views.py: per-connector actions and staged config deploys
- alert_views.py: alert listing, statistics and resolution
- monitoring_views.py: monitoring thresholds and service health
"""
