from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('pipelines', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='pipeline',
            name='enable_log_monitoring',
            field=models.BooleanField(default=False),
        ),
        migrations.AddField(
            model_name='pipeline',
            name='max_wal_size',
            field=models.PositiveIntegerField(default=1024, help_text='Maximum retained WAL in MB'),
        ),
        migrations.AddField(
            model_name='pipeline',
            name='alert_threshold',
            field=models.PositiveIntegerField(default=80, help_text='Percentage of max_wal_size at which a WAL_SIZE_EXCEEDED alert is raised'),
        ),
        migrations.AddField(
            model_name='pipeline',
            name='wal_check_interval_seconds',
            field=models.PositiveIntegerField(default=60),
        ),
    ]
