from django.apps import AppConfig
from django.conf import settings


class OrdersConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'orders'

    def ready(self):
        from shop_backend.esewa_config import EsewaConfig
        from .services import EsewaService

        self.esewa_config = EsewaConfig.from_settings(settings)
        self.gateway = EsewaService(self.esewa_config)
