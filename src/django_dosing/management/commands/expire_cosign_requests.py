"""Management command to expire elapsed co-sign requests."""

from django.core.management.base import BaseCommand
from django.utils import timezone

from django_dosing.services.cosign import expire_stale_co_sign_requests, stale_co_sign_requests


class Command(BaseCommand):
    help = 'Mark pending co-sign requests whose window has elapsed as expired'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show how many requests would expire without changing them'
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options['dry_run']:
            count = stale_co_sign_requests(now).count()
            self.stdout.write(f'Would expire {count} co-sign requests')
            return

        count = expire_stale_co_sign_requests(now=now)
        self.stdout.write(self.style.SUCCESS(f'Expired {count} co-sign requests'))
