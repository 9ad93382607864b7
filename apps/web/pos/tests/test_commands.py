"""Tests for the POS management commands."""

from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError

import pytest


@pytest.mark.django_db
class TestProcessWebhookJobsCommand:
    """manage.py process_webhook_jobs"""

    def test_once(self):
        out = StringIO()
        with patch(
            "apps.web.pos.management.commands.process_webhook_jobs.drain_webhook_jobs",
            return_value={"claimed": 2, "done": 1, "failed": 1},
        ) as mock_drain:
            call_command("process_webhook_jobs", "--once", "--provider", "square", stdout=out)

        kwargs = mock_drain.call_args.kwargs
        assert kwargs["provider"] == "square"
        assert kwargs["limit"] == 20
        assert kwargs["worker_id"].startswith("worker-")
        assert "Claimed 2 jobs: 1 done, 1 failed" in out.getvalue()

    def test_rejects_bad_limit(self):
        with pytest.raises(CommandError):
            call_command("process_webhook_jobs", "--once", "--limit", "0")

    def test_empty_queue(self, mock_location):
        out = StringIO()

        call_command("process_webhook_jobs", "--once", stdout=out)

        assert "Starting webhook job worker" in out.getvalue()
        assert "Claimed" not in out.getvalue()


@pytest.mark.django_db
class TestReconcileOrdersCommand:
    """manage.py reconcile_orders"""

    def test_once(self, mock_location):
        out = StringIO()

        call_command("reconcile_orders", "--once", "--minutes-back", "15", stdout=out)

        output = out.getvalue()
        assert "15 min window" in output
        assert "Reconciled 1 locations" in output

    def test_locations_passed(self):
        out = StringIO()
        with patch(
            "apps.web.pos.management.commands.reconcile_orders.reconcile_all",
            return_value={
                "summary": {
                    "locations": 1,
                    "ordersFetched": 0,
                    "processed": 0,
                    "createdTickets": 0,
                    "updatedTickets": 0,
                    "errors": 1,
                },
                "locations": [{"locationId": "L1", "vendor": "acme", "error": "boom"}],
            },
        ) as mock_reconcile:
            err = StringIO()
            call_command(
                "reconcile_orders",
                "--once",
                "--location",
                "L1",
                "--location",
                "L2",
                stdout=out,
                stderr=err,
            )

        mock_reconcile.assert_called_once_with(10, ["L1", "L2"])
        assert "acme/L1: boom" in err.getvalue()
