"""Celery implementation of the event dispatcher used by every worker."""

import logging
from typing import Any, Dict, Optional

from .celery_app import celery_app

logger = logging.getLogger(__name__)


class CeleryDispatcher:
    """Publish pipeline events as Celery tasks named after the event."""

    def __init__(self, app=None):
        self.app = app or celery_app

    def send(self, event: str, payload: Dict[str, Any], countdown: Optional[float] = None) -> str:
        task = self.app.tasks.get(event)
        if task is not None:
            result = task.apply_async(kwargs=payload, countdown=countdown)
        else:
            result = self.app.send_task(event, kwargs=payload, countdown=countdown)
        logger.debug(f"Dispatched {event} {payload} (countdown={countdown})")
        return result.id
