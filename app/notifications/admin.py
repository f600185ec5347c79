"""Django admin configuration for notifications."""

from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("kind", "recipient", "title", "is_read", "created_at")
    list_filter = ("kind", "is_read")
    search_fields = ("recipient__email", "title", "idempotency_key")
    raw_id_fields = ("recipient", "actor")
    readonly_fields = ("created_at", "updated_at")
