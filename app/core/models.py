"""
Abstract base model.

Domain models combine it with the mixins in core.model_mixins, mixins
first:

    class Rating(UUIDPrimaryKeyMixin, BaseModel):
        score = models.PositiveSmallIntegerField()
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """Creation and modification timestamps, newest first by default."""

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.pk})"
