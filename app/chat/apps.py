"""
Chat app: one conversation per order, carrying system messages for
settlement events.
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Order Chat"
