from django.apps import AppConfig


class DeviceSyncConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'devicesync'
    verbose_name = 'Device Sync'
