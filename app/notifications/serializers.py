"""Serializers for the notifications API."""

from rest_framework import serializers

from notifications.models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "kind", "title", "body", "data", "is_read", "created_at"]
        read_only_fields = fields


class MarkAllReadResponseSerializer(serializers.Serializer):
    marked_count = serializers.IntegerField()
