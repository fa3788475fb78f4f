from django.apps import AppConfig


class ChamaPayConfig(AppConfig):
    default_auto_field = 'django.db.models.AutoField'
    name = 'Chama_pay'
    verbose_name = 'Chama payments'
