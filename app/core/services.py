"""
Service layer building blocks.

- ServiceResult: outcome of an operation whose failure is an expected
  answer (duplicate notification, refund retry scheduled) rather than
  an error the caller must not ignore
- BaseService: stateless classmethod services with a class-named logger

Failures the caller must not ignore (bad amounts, lost state races,
gateway outages) are raised as core.exceptions / payments.exceptions
instead.

Usage:
    from core.services import BaseService, ServiceResult

    class RatingService(BaseService):
        @classmethod
        def rate(cls, order, score: int) -> ServiceResult[Rating]:
            if Rating.objects.filter(order=order).exists():
                return ServiceResult.failure("Already rated", error_code="ALREADY_RATED")

            with cls.atomic():
                rating = Rating.objects.create(order=order, score=score)

            cls.get_logger().info("Rated order %s", order.id)
            return ServiceResult.success(rating)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Success flag plus either data or an error.

    Truthy on success:

        result = RefundService.process(refund)
        if not result and result.error_code == "REFUND_RETRY_SCHEDULED":
            ...
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failed result carrying the exception's message.

        Application errors keep their own error_code; anything else falls
        back to the exception class name.
        """
        code = error_code or getattr(exc, "error_code", None) or exc.__class__.__name__.upper()
        message = getattr(exc, "message", None) or str(exc)
        return cls(success=False, error=message, error_code=code)

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for services.

    Services hold no state: every method is a classmethod and per-call
    data travels in arguments.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """transaction.atomic(), spelled so transaction boundaries stand out in services."""
        with transaction.atomic():
            yield
