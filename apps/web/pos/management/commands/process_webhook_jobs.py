"""
Drain the POS webhook job queue.

Usage:
    doppler run -- uv run python apps/web/manage.py process_webhook_jobs
    doppler run -- uv run python apps/web/manage.py process_webhook_jobs --once
    doppler run -- uv run python apps/web/manage.py process_webhook_jobs \\
        --provider square --limit 50
"""

import time
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from passline_schemas import POSProvider

from apps.web.pos.services import job_queue
from apps.web.pos.tasks import drain_webhook_jobs


class Command(BaseCommand):
    help = "Claim due webhook jobs and ingest their orders"

    def add_arguments(self, parser: Any) -> None:
        parser.add_argument(
            "--once",
            action="store_true",
            help="Drain once and exit (default: poll every 10s)",
        )
        parser.add_argument(
            "--interval",
            type=int,
            default=10,
            help="Polling interval in seconds (default: 10)",
        )
        parser.add_argument(
            "--provider",
            choices=[p.value for p in POSProvider],
            default=None,
            help="Only process jobs for this provider",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=job_queue.CLAIM_LIMIT,
            help=f"Jobs to claim per pass (default: {job_queue.CLAIM_LIMIT})",
        )

    def handle(self, *_args: Any, **options: Any) -> None:
        once = options["once"]
        interval = options["interval"]
        provider = options["provider"]
        limit = options["limit"]
        if limit < 1:
            raise CommandError("--limit must be at least 1")

        worker_id = job_queue.new_worker_id()
        self.stdout.write(f"Starting webhook job worker {worker_id}...")
        if provider:
            self.stdout.write(f"  (provider: {provider})")

        while True:
            counts = drain_webhook_jobs(provider=provider, limit=limit, worker_id=worker_id)

            if counts["claimed"]:
                self.stdout.write(
                    f"Claimed {counts['claimed']} jobs: "
                    f"{counts['done']} done, {counts['failed']} failed"
                )

            if once:
                break

            # A full batch means more may be due right away
            if counts["claimed"] < limit:
                time.sleep(interval)
