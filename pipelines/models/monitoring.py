"""
Monitoring thresholds
- MonitoringSettings: singleton row holding operator-configured thresholds
- MonitoringThresholds: immutable per-cycle snapshot of those thresholds
"""

from dataclasses import asdict, dataclass, fields

from django.conf import settings
from django.db import models


@dataclass(frozen=True)
class MonitoringThresholds:
    lag_ms: float = 5000
    throughput_drop_percent: float = 50
    error_rate_percent: float = 1
    dlq_count: int = 0
    check_interval_ms: int = 60000
    pause_duration_seconds: float = 5

    @classmethod
    def defaults(cls) -> 'MonitoringThresholds':
        overrides = getattr(settings, 'MONITORING', {}).get('DEFAULT_THRESHOLDS', {})
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in overrides.items() if k in names})

    def to_dict(self) -> dict:
        return asdict(self)


class MonitoringSettings(models.Model):
    """Singleton (pk=1) alert thresholds, read once per monitoring cycle"""

    SINGLETON_PK = 1

    lag_ms = models.FloatField(default=5000)
    throughput_drop_percent = models.FloatField(default=50)
    error_rate_percent = models.FloatField(default=1)
    dlq_count = models.IntegerField(default=0)
    check_interval_ms = models.PositiveIntegerField(default=60000)
    pause_duration_seconds = models.FloatField(default=5)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'monitoring_settings'

    def __str__(self):
        return f"MonitoringSettings(lag_ms={self.lag_ms}, interval={self.check_interval_ms}ms)"

    @classmethod
    def load_thresholds(cls) -> MonitoringThresholds:
        row = cls.objects.filter(pk=cls.SINGLETON_PK).first()
        if row is None:
            return MonitoringThresholds.defaults()
        return row.as_thresholds()

    @classmethod
    def store(cls, values: dict) -> 'MonitoringSettings':
        """Upsert the singleton row from a partial dict of threshold values and return it as stored."""
        defaults = MonitoringThresholds.defaults().to_dict()
        current = cls.objects.filter(pk=cls.SINGLETON_PK).first()
        if current is not None:
            defaults = current.as_thresholds().to_dict()
        names = {f.name for f in fields(MonitoringThresholds)}
        defaults.update({k: v for k, v in values.items() if k in names})
        cls.objects.update_or_create(pk=cls.SINGLETON_PK, defaults=defaults)
        return cls.objects.get(pk=cls.SINGLETON_PK)

    def as_thresholds(self) -> MonitoringThresholds:
        return MonitoringThresholds(
            lag_ms=self.lag_ms,
            throughput_drop_percent=self.throughput_drop_percent,
            error_rate_percent=self.error_rate_percent,
            dlq_count=self.dlq_count,
            check_interval_ms=self.check_interval_ms,
            pause_duration_seconds=self.pause_duration_seconds,
        )
