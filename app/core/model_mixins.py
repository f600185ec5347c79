"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedModelMixin: Optimistic-locking version counter

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedModelMixin

    class Refund(UUIDPrimaryKeyMixin, VersionedModelMixin, BaseModel):
        amount = models.PositiveBigIntegerField()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    UUIDs are non-guessable, so they are safe to expose in URLs and
    gateway correlation notes.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedModelMixin(models.Model):
    """
    Optimistic locking version counter.

    Every save of an existing row increments ``version`` in the database
    with an F() expression, then reloads the new value. Conditional
    updates can filter on ``version`` to detect concurrent writers.

    Note:
        Uses ``_state.adding`` rather than ``pk`` to detect inserts, since
        UUID primary keys are populated before the first save.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
