"""
Core views providing infrastructure endpoints.

Views here are not part of the settlement domain; they exist for
orchestration and monitoring.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and container orchestrators.

    Returns 200 when the database answers and 503 otherwise. Cache
    failures are reported but do not fail the check.

    Example Response:
        {"status": "healthy", "database": "connected", "cache": "connected"}
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        cache.set("health_check", "ok", timeout=1)
        health_status["cache"] = "connected" if cache.get("health_check") == "ok" else "disconnected"
    except Exception:  # noqa: BLE001 - any cache backend failure means degraded
        logger.warning("Health check: cache unreachable", exc_info=True)
        health_status["cache"] = "disconnected"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
