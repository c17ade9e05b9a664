from django.apps import AppConfig, apps


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    label = 'core'
    services = None

    def ready(self):
        from .services import build_services

        self.services = build_services()


def get_services():
    """Contenedor de servicios construido al arrancar el proceso."""
    return apps.get_app_config('core').services
