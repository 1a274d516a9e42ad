from django.urls import path

from .views import alert_views, connector_views, monitoring_views, pipeline_views

app_name = 'pipelines'

urlpatterns = [
    path('health', monitoring_views.health, name='health'),

    # Pipelines
    path('pipelines/connectors/statuses', pipeline_views.all_connector_statuses, name='all_connector_statuses'),
    path('pipelines/<int:pk>/deploy', pipeline_views.deploy_pipeline, name='deploy_pipeline'),
    path('pipelines/<int:pk>/start', pipeline_views.start_pipeline, name='start_pipeline'),
    path('pipelines/<int:pk>/pause', pipeline_views.pause_pipeline, name='pause_pipeline'),
    path('pipelines/<int:pk>/connectors', pipeline_views.delete_pipeline_connectors, name='delete_pipeline_connectors'),
    path('pipelines/<int:pk>/restore', pipeline_views.restore_pipeline, name='restore_pipeline'),
    path('pipelines/<int:pk>/status', pipeline_views.pipeline_status, name='pipeline_status'),
    path('pipelines/<int:pk>/progress', pipeline_views.pipeline_progress, name='pipeline_progress'),
    path('pipelines/<int:pk>/activity', pipeline_views.pipeline_activity, name='pipeline_activity'),
    path('pipelines/<int:pk>/monitoring', pipeline_views.pipeline_monitoring, name='pipeline_monitoring'),
    path('pipelines/<int:pk>/logs', pipeline_views.pipeline_logs, name='pipeline_logs'),
    path('pipelines/<int:pk>/state-changes', pipeline_views.pipeline_state_changes, name='pipeline_state_changes'),
    path('pipelines/<int:pk>/wal-size', pipeline_views.pipeline_wal_size, name='pipeline_wal_size'),

    # Pipeline alerts
    path('pipelines/<int:pk>/alerts', alert_views.pipeline_alerts, name='pipeline_alerts'),
    path('pipelines/<int:pk>/alerts/resolve-all', alert_views.resolve_all_alerts, name='resolve_all_alerts'),

    # Connectors
    path('connectors/<int:connector_id>/deploy-pending', connector_views.deploy_pending, name='deploy_pending'),
    path('connectors/<str:connector_name>/pause', connector_views.pause_connector, name='pause_connector'),
    path('connectors/<str:connector_name>/resume', connector_views.resume_connector, name='resume_connector'),
    path('connectors/<str:connector_name>/restart', connector_views.restart_connector, name='restart_connector'),
    path('connectors/<str:connector_name>', connector_views.delete_connector, name='delete_connector'),

    # Alerts
    path('alerts', alert_views.list_unresolved_alerts, name='alerts'),
    path('alerts/stats', alert_views.alert_statistics, name='alert_stats'),
    path('alerts/<int:alert_id>/resolve', alert_views.resolve_alert_view, name='resolve_alert'),

    # Monitoring
    path('monitoring/thresholds', monitoring_views.thresholds, name='monitoring_thresholds'),
]
