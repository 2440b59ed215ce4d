from django.apps import AppConfig


class ChatAppConfig(AppConfig):
    name = "strangerchat.apps.chat_app"
    label = "chat_app"
    verbose_name = "Stranger chat matchmaking"
