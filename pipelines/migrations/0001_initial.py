import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Pipeline',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255, unique=True)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('ready', 'Ready'), ('running', 'Running'), ('paused', 'Paused'), ('seeding', 'Seeding'), ('incremental', 'Incremental'), ('idle', 'Idle'), ('error', 'Error'), ('deleted', 'Deleted')], default='draft', max_length=20)),
                ('restore_count', models.PositiveIntegerField(default=0, help_text='Number of times this pipeline was restored; source identifiers get an _r{N} suffix')),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('backup_retention_hours', models.PositiveIntegerField(default=24, help_text='Hours a soft-deleted pipeline is kept for restore before it is purged')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'pipelines',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='MonitoringSettings',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('lag_ms', models.FloatField(default=5000)),
                ('throughput_drop_percent', models.FloatField(default=50)),
                ('error_rate_percent', models.FloatField(default=1)),
                ('dlq_count', models.IntegerField(default=0)),
                ('check_interval_ms', models.PositiveIntegerField(default=60000)),
                ('pause_duration_seconds', models.FloatField(default=5)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'monitoring_settings',
            },
        ),
        migrations.CreateModel(
            name='RegisteredConnector',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255, unique=True)),
                ('connector_class', models.CharField(blank=True, default='', max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'connector_registry',
            },
        ),
        migrations.CreateModel(
            name='ConnectorVersion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('version', models.PositiveIntegerField()),
                ('config', models.JSONField(default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('registered_connector', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='versions', to='pipelines.registeredconnector')),
            ],
            options={
                'db_table': 'connector_versions',
                'ordering': ['-version'],
            },
        ),
        migrations.CreateModel(
            name='PipelineConnector',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Connector name in Kafka Connect', max_length=255)),
                ('type', models.CharField(choices=[('source', 'Source'), ('sink', 'Sink')], max_length=10)),
                ('connector_class', models.CharField(blank=True, default='', max_length=255)),
                ('config', models.JSONField(blank=True, default=dict)),
                ('pending_config', models.JSONField(blank=True, null=True)),
                ('has_pending_changes', models.BooleanField(default=False)),
                ('last_deployed_version', models.IntegerField(blank=True, help_text='ConnectorVersion.version the deployed config came from', null=True)),
                ('last_deployed_at', models.DateTimeField(blank=True, null=True)),
                ('status', models.CharField(default='pending', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('pipeline', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='connectors', to='pipelines.pipeline')),
            ],
            options={
                'db_table': 'pipeline_connectors',
            },
        ),
        migrations.CreateModel(
            name='PipelineEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('source_connected', 'Source Connected'), ('ingesting_started', 'Ingesting Started'), ('staging_events', 'Staging Events'), ('loading_started', 'Loading Started'), ('info', 'Info'), ('warning', 'Warning'), ('error', 'Error')], max_length=32)),
                ('event_status', models.CharField(choices=[('completed', 'Completed'), ('failed', 'Failed'), ('info', 'Info')], default='info', max_length=16)),
                ('message', models.TextField(blank=True, default='')),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('pipeline', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='pipelines.pipeline')),
            ],
            options={
                'db_table': 'pipeline_events',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='AlertEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('alert_type', models.CharField(choices=[('CONNECTOR_FAILED', 'Connector Failed'), ('CONNECTOR_PAUSED', 'Connector Paused'), ('TASK_FAILED', 'Task Failed'), ('HIGH_LAG', 'High Lag'), ('THROUGHPUT_DROP', 'Throughput Drop'), ('HIGH_ERROR_RATE', 'High Error Rate')], max_length=32)),
                ('severity', models.CharField(choices=[('critical', 'Critical'), ('warning', 'Warning'), ('info', 'Info')], default='warning', max_length=10)),
                ('connector_type', models.CharField(blank=True, max_length=10, null=True)),
                ('message', models.TextField()),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('resolved', models.BooleanField(default=False)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('pipeline', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='alerts', to='pipelines.pipeline')),
            ],
            options={
                'db_table': 'alert_events',
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='connectorversion',
            constraint=models.UniqueConstraint(fields=('registered_connector', 'version'), name='unique_connector_version'),
        ),
        migrations.AddConstraint(
            model_name='pipelineconnector',
            constraint=models.UniqueConstraint(fields=('pipeline', 'type'), name='unique_connector_type_per_pipeline'),
        ),
        migrations.AddIndex(
            model_name='pipelineevent',
            index=models.Index(fields=['pipeline', '-created_at'], name='pipeline_ev_pipelin_6b1f0e_idx'),
        ),
        migrations.AddIndex(
            model_name='alertevent',
            index=models.Index(fields=['pipeline', 'resolved'], name='alert_event_pipelin_3c9d2a_idx'),
        ),
        migrations.AddConstraint(
            model_name='alertevent',
            constraint=models.UniqueConstraint(condition=models.Q(('resolved', False)), fields=('pipeline', 'alert_type', 'connector_type'), name='unique_unresolved_alert'),
        ),
    ]
