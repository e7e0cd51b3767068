import os

from django.apps import AppConfig


class SignalingConfig(AppConfig):
    name = "signaling"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        if os.environ.get("SIGNALING_DISABLE_RUNTIME") == "1":
            return
        from .runtime import init_runtime

        init_runtime()
