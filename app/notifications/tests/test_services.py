"""
Tests for NotificationService and the notification endpoints.
"""

import pytest
from rest_framework.test import APIClient

from authentication.tests.factories import ClientFactory
from notifications.models import Notification, NotificationKind
from notifications.services import NotificationService


@pytest.mark.django_db
class TestCreateNotification:
    def test_creates_notification(self):
        user = ClientFactory()

        result = NotificationService.create_notification(
            recipient=user,
            kind=NotificationKind.REFUND_PROCESSED,
            title="Refund processed",
            data={"amount": 750},
        )

        assert result.success
        assert result.data.recipient == user
        assert result.data.data == {"amount": 750}

    def test_duplicate_idempotency_key_is_rejected(self):
        user = ClientFactory()
        kwargs = {
            "recipient": user,
            "kind": NotificationKind.ESCROW_HELD,
            "title": "Payment secured",
            "idempotency_key": "escrow_held:abc:1",
        }

        first = NotificationService.create_notification(**kwargs)
        second = NotificationService.create_notification(**kwargs)

        assert first.success
        assert not second.success
        assert second.error_code == "DUPLICATE"
        assert Notification.objects.filter(recipient=user).count() == 1

    def test_source_object_is_linked(self):
        user = ClientFactory()
        other = ClientFactory()

        result = NotificationService.create_notification(
            recipient=user,
            kind=NotificationKind.DISPUTE_OPENED,
            title="Dispute opened",
            source_object=other,
        )

        assert result.data.object_id == str(other.pk)


@pytest.mark.django_db
class TestNotificationEndpoints:
    def test_list_and_mark_all_read(self):
        user = ClientFactory()
        NotificationService.create_notification(
            recipient=user, kind=NotificationKind.ORDER_OVERDUE, title="Overdue"
        )
        NotificationService.create_notification(
            recipient=ClientFactory(), kind=NotificationKind.ORDER_OVERDUE, title="Other"
        )
        api = APIClient()
        api.force_authenticate(user)

        listing = api.get("/api/v1/notifications/")
        marked = api.post("/api/v1/notifications/read-all/")

        assert listing.status_code == 200
        assert listing.json()["count"] == 1
        assert marked.json() == {"marked_count": 1}
