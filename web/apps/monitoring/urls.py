"""Operational endpoints mounted at the site root (outside ``/api/``)."""

from django.urls import path

from .api import health_view

urlpatterns = [
    # Load balancers poll this without credentials
    path("health/", health_view, name="health"),
]
