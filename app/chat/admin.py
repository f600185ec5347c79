"""Django admin configuration for chat."""

from django.contrib import admin

from chat.models import Conversation, Message


class MessageInline(admin.TabularInline):
    model = Message
    extra = 0
    fields = ("message_type", "sender", "content", "created_at")
    readonly_fields = fields


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ("order", "last_message_at", "created_at")
    raw_id_fields = ("order",)
    inlines = [MessageInline]
