"""
URL configuration for Passline.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    # POS webhooks and ingestion triggers
    path("", include("apps.web.pos.urls")),
]
