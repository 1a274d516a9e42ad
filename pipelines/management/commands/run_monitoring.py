"""
Management command to run the monitoring engine as a standalone process
"""

import signal

from django.core.management.base import BaseCommand

from pipelines.monitoring.engine import MonitoringEngine


class Command(BaseCommand):
    help = 'Run the pipeline health monitoring engine (every check_interval_ms, or once with --once)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single monitoring cycle and exit',
        )

    def handle(self, *args, **options):
        engine = MonitoringEngine()

        if options['once']:
            summary = engine.run_cycle()
            self.stdout.write(self.style.SUCCESS(
                f"Checked {summary.checked} pipelines: {summary.alerts_raised} alerts "
                f"({summary.alerts_created} new), {len(summary.failures)} failures"
            ))
            for name in summary.failures:
                self.stdout.write(self.style.WARNING(f"  Failed: {name}"))
            return

        def shutdown(signum, frame):
            self.stdout.write(self.style.WARNING('Stopping monitoring engine...'))
            engine.stop()

        signal.signal(signal.SIGTERM, shutdown)
        signal.signal(signal.SIGINT, shutdown)

        self.stdout.write(self.style.SUCCESS('\n' + '=' * 60))
        self.stdout.write(self.style.SUCCESS('  PIPELINE MONITORING ENGINE'))
        self.stdout.write(self.style.SUCCESS('=' * 60 + '\n'))

        engine.run_forever()
