from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "notifications"

    def ready(self):
        from jobs.events import job_event

        from .services import dispatch_job_event

        job_event.connect(dispatch_job_event, dispatch_uid="notifications.dispatch_job_event")
