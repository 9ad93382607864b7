"""Admin registration for POS models."""

from django.contrib import admin

from apps.web.pos.models import WebhookEvent, WebhookJob


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):  # type: ignore[type-arg]
    """Admin for raw webhook events."""

    list_display = [
        "id",
        "provider",
        "event_type",
        "external_event_id",
        "status",
        "reason",
        "received_at",
        "processed_at",
    ]
    list_filter = ["provider", "event_type", "status"]
    search_fields = ["external_event_id"]
    readonly_fields = [
        "id",
        "payload",
        "received_at",
        "processed_at",
    ]
    ordering = ["-received_at"]
    date_hierarchy = "received_at"


@admin.register(WebhookJob)
class WebhookJobAdmin(admin.ModelAdmin):  # type: ignore[type-arg]
    """Admin for queued jobs - failed jobs surface here for operators."""

    list_display = [
        "id",
        "provider",
        "status",
        "attempts",
        "next_attempt_at",
        "locked_by",
        "locked_at",
    ]
    list_filter = ["provider", "status"]
    search_fields = ["event__external_event_id", "last_error"]
    readonly_fields = ["id", "event", "created_at", "updated_at"]
    ordering = ["next_attempt_at"]
    actions = ["requeue_jobs"]

    @admin.action(description="Requeue selected jobs now")
    def requeue_jobs(self, request, queryset):  # type: ignore[no-untyped-def]
        from apps.web.pos.services.job_queue import requeue  # noqa: PLC0415

        count = requeue(queryset.values_list("id", flat=True))
        self.message_user(request, f"Requeued {count} job(s)")
