from django.apps import AppConfig


class WarrantiesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "warranties"
