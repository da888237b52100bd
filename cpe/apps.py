from django.apps import AppConfig


class CpeConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "cpe"
    verbose_name = "Comprovantes de Pagamento Eletrônicos"
