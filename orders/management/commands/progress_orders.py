"""
Management command to run the order auto-progress sweep.

Usage:
    python manage.py progress_orders                # one sweep, then exit
    python manage.py progress_orders --loop         # sweep every interval
    python manage.py progress_orders --max-per-run 50
"""
import time

from django.core.management.base import BaseCommand, CommandError

from orders.progressor import OrderProgressor, ProgressorConfig


class Command(BaseCommand):
    help = 'Advance orders that have been in their current status longer than the configured delay'

    def add_arguments(self, parser):
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Keep running, sweeping once per configured interval',
        )
        parser.add_argument(
            '--max-per-run',
            type=int,
            default=None,
            help='Cap on orders advanced per sweep (default: from settings)',
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Run even if ORDER_AUTOPROGRESS_ENABLED is off',
        )

    def handle(self, *args, **options):
        try:
            config = ProgressorConfig.from_settings()
        except ValueError as e:
            raise CommandError(f'Invalid auto-progress configuration: {e}')

        if not config.enabled and not options['force']:
            self.stdout.write(self.style.WARNING(
                'Auto-progress is disabled (set ORDER_AUTOPROGRESS_ENABLED=1 or pass --force).'
            ))
            return

        progressor = OrderProgressor(config)
        max_per_run = options['max_per_run']

        if not options['loop']:
            progressed = progressor.run_once(max_per_run=max_per_run)
            self.stdout.write(self.style.SUCCESS(f'Progressed {progressed} orders'))
            return

        interval = config.interval.total_seconds()
        self.stdout.write(f'Loop mode started (every {interval:g}s)')
        try:
            while True:
                try:
                    progressed = progressor.run_once(max_per_run=max_per_run)
                    if progressed:
                        self.stdout.write(f'Progressed {progressed} orders')
                except Exception as e:
                    self.stderr.write(f'Sweep failed: {e}')
                time.sleep(interval)
        except KeyboardInterrupt:
            self.stdout.write('Stopped.')
