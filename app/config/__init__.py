# Load the Celery app with Django so shared_task decorators bind to it and
# celery-beat finds the settlement sweeps.
from config.celery import app as celery_app

__all__ = ("celery_app",)
