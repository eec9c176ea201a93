from django.apps import AppConfig


class OverstaysConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "overstays"
    verbose_name = "Overstay penalties"
