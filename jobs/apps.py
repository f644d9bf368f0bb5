# jobs/apps.py

from django.apps import AppConfig


class JobsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "jobs"

    def ready(self):
        # Registers the job_number receiver
        from . import signals  # noqa: F401
