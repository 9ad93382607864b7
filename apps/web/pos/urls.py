"""
URL routes for POS webhooks and ingestion triggers.
"""

from django.urls import path

from . import views

app_name = "pos"

urlpatterns = [
    path("webhooks/clover/hco/", views.clover_hco_webhook, name="clover_hco_webhook"),
    path("webhooks/<str:provider>/", views.pos_webhook, name="webhook"),
    path("jobs/process-webhooks/", views.process_webhook_jobs, name="process_webhooks"),
    path("cron/reconcile/", views.cron_reconcile, name="cron_reconcile"),
    path("ops/reconcile/", views.ops_reconcile, name="ops_reconcile"),
]
