"""
Reconcile recent POS orders against local state.

Usage:
    doppler run -- uv run python apps/web/manage.py reconcile_orders --once
    doppler run -- uv run python apps/web/manage.py reconcile_orders \\
        --minutes-back 30 --location L123 --location L456
"""

import time
from typing import Any

from django.conf import settings
from django.core.management.base import BaseCommand

from apps.web.pos.services.reconciliation import reconcile_all


class Command(BaseCommand):
    help = "Replay recently updated POS orders through ingestion"

    def add_arguments(self, parser: Any) -> None:
        parser.add_argument(
            "--once",
            action="store_true",
            help="Reconcile once and exit (default: poll every 5 minutes)",
        )
        parser.add_argument(
            "--interval",
            type=int,
            default=300,
            help="Polling interval in seconds (default: 300)",
        )
        parser.add_argument(
            "--minutes-back",
            type=int,
            default=None,
            help="Window size in minutes (default: POLL_MINUTES_BACK)",
        )
        parser.add_argument(
            "--location",
            action="append",
            dest="locations",
            default=None,
            help="POS location ID to reconcile; repeatable (default: all)",
        )

    def handle(self, *_args: Any, **options: Any) -> None:
        once = options["once"]
        interval = options["interval"]
        minutes_back = options["minutes_back"] or int(
            getattr(settings, "POLL_MINUTES_BACK", 10)
        )
        locations = options["locations"]

        self.stdout.write(f"Starting reconciliation ({minutes_back} min window)...")

        while True:
            outcome = reconcile_all(minutes_back, locations)
            summary = outcome["summary"]
            self.stdout.write(
                f"Reconciled {summary['locations']} locations: "
                f"{summary['ordersFetched']} fetched, {summary['processed']} processed, "
                f"{summary['createdTickets']} tickets created, "
                f"{summary['updatedTickets']} updated, {summary['errors']} errors"
            )
            for entry in outcome["locations"]:
                if "error" in entry:
                    self.stderr.write(
                        f"  {entry['vendor']}/{entry['locationId']}: {entry['error']}"
                    )

            if once:
                break

            time.sleep(interval)
