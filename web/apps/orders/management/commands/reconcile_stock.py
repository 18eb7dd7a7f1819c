"""
Management command that finishes deferred stock compensations.

Cancelled orders whose stock could not be returned to the catalog at
cancellation time stay flagged with ``stock_restored = False``. Orders
that failed to persist after the catalog took their stock leave a
pending release behind. This command retries both; every catalog call
carries a reference the catalog applies at most once, so running it
repeatedly is safe.
"""
import time

from django.core.management.base import BaseCommand

from apps.orders.providers import get_lifecycle_manager


class Command(BaseCommand):
    help = 'Return stock held by cancelled or failed orders to the catalog'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=100,
            help='Maximum number of orders to process in one run',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Run in loop (for production)',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=30,
            help='Interval between loops in seconds',
        )

    def handle(self, *args, **options):
        limit = options['limit']
        interval = options['interval']

        if options['loop']:
            self.stdout.write(f'Starting stock reconciliation in loop mode (interval: {interval}s)')
            while True:
                try:
                    restored, released = self._run_once(limit)
                    if restored > 0:
                        self.stdout.write(self.style.SUCCESS(f'Restored stock for {restored} orders'))
                    if released > 0:
                        self.stdout.write(self.style.SUCCESS(f'Released stock for {released} failed orders'))
                    time.sleep(interval)
                except KeyboardInterrupt:
                    self.stdout.write(self.style.WARNING('Stopped by user'))
                    break
        else:
            restored, released = self._run_once(limit)
            self.stdout.write(self.style.SUCCESS(f'Restored stock for {restored} orders'))
            self.stdout.write(self.style.SUCCESS(f'Released stock for {released} failed orders'))

    def _run_once(self, limit):
        manager = get_lifecycle_manager()
        return manager.restore_pending_stock(limit=limit), manager.release_pending_reservations(limit=limit)
