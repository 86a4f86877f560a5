"""
URL configuration for signalnoise project.

The sync API lives under /api/sync; /health is a plain liveness probe.
"""
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    # Health check endpoint
    path('health', lambda request: JsonResponse({"status": "ok"}), name='health'),
    path('', include('devicesync.urls')),
]
