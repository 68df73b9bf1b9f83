"""Management command to replay the database-backed offline queue."""

from django.core.management.base import BaseCommand

from django_dosing.offline import DatabaseQueueStore, OfflineQueue, local_handlers


class Command(BaseCommand):
    help = 'Replay queued offline actions in FIFO order'

    def add_arguments(self, parser):
        parser.add_argument(
            '--retry-delay',
            type=float,
            default=1.0,
            help='Seconds per prior attempt to wait before retrying an entry (default: 1.0)'
        )

    def handle(self, *args, **options):
        queue = OfflineQueue(
            DatabaseQueueStore(),
            local_handlers(),
            retry_delay=options['retry_delay'],
        )
        result = queue.replay()

        self.stdout.write(
            self.style.SUCCESS(
                f'Replayed {len(result.succeeded)} entries, '
                f'{len(result.retrying)} retrying, {len(result.failed)} failed'
            )
        )
        for entry in queue.failed():
            self.stdout.write(f'  - {entry.action_type} {entry.idempotency_key}: {entry.last_error}')
