"""
Views for the notification API.

Endpoints:
    GET /api/v1/notifications/ - List the user's notifications
    GET /api/v1/notifications/{id}/ - Notification detail
    POST /api/v1/notifications/read-all/ - Mark all notifications as read
"""

from __future__ import annotations

from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from notifications.models import Notification
from notifications.serializers import MarkAllReadResponseSerializer, NotificationSerializer
from notifications.services import NotificationService


@extend_schema_view(
    list=extend_schema(
        operation_id="list_notifications",
        summary="List notifications",
        tags=["Notifications"],
    ),
    retrieve=extend_schema(
        operation_id="get_notification",
        summary="Get notification",
        tags=["Notifications"],
    ),
)
class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    """Read-only access to the authenticated user's notifications."""

    serializer_class = NotificationSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Notification.objects.filter(recipient=self.request.user)

    @extend_schema(
        operation_id="mark_all_notifications_read",
        summary="Mark all as read",
        request=None,
        responses={200: MarkAllReadResponseSerializer},
        tags=["Notifications"],
    )
    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request):
        count = NotificationService.mark_read(request.user)
        return Response({"marked_count": count}, status=status.HTTP_200_OK)
