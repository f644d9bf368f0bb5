"""
URL configuration for the D.G.Yard jobs backend.
"""
from django.contrib import admin
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.utils.timezone import now
from django.urls import path, include


def health_view(request):
    db_status = "up"
    try:
        connection.ensure_connection()
    except DatabaseError:
        db_status = "down"

    return JsonResponse(
        {
            "status": "OK",
            "db": db_status,
            "timestamp": now().isoformat(),
        }
    )


urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", health_view),
    path("", include("jobs.urls")),
    path("", include("payments.urls")),
    path("", include("warranties.urls")),
]
