"""
Background Tasks Package
Celery tasks for imports and upload housekeeping.
"""

from .celery_app import app

__all__ = ["app"]
