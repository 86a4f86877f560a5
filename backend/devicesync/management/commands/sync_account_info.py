from datetime import datetime, timezone as dt_timezone

from django.core.management.base import BaseCommand, CommandError

from devicesync.service import SyncCodeNotFound, account_summary
from devicesync.store import StoreError


def _fmt_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=dt_timezone.utc).isoformat()


class Command(BaseCommand):
    help = "Show a sync account's timestamps and item counts (never its PIN hash or salt)."

    def add_arguments(self, parser):
        parser.add_argument('sync_code', help='Sync code, with or without the prefix')

    def handle(self, *args, **options):
        try:
            summary = account_summary(sync_code=options['sync_code'])
        except SyncCodeNotFound:
            raise CommandError(f"Sync code {options['sync_code']} not found")
        except StoreError as exc:
            raise CommandError(f"Store failure: {exc}")

        self.stdout.write(f"Account {summary['sync_code']}")
        self.stdout.write(f"  created:      {_fmt_ms(summary['created_at'])}")
        self.stdout.write(f"  last synced:  {_fmt_ms(summary['last_synced_at'])}")
        self.stdout.write(f"  todos: {summary['todos']}  recurring: {summary['recurring_tasks']}  pauses: {summary['pause_logs']}")
        self.stdout.write(f"  timer active: {'yes' if summary['timer_active'] else 'no'}")
        self.stdout.write(f"  recurring markers: {summary['recurring_added_dates']}")
