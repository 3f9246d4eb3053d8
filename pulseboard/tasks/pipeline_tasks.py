"""
Pipeline tasks, one per event name.

Retry policy:
- ``LimitError`` requeues the same event with the limiter's delay; the new
  job starts with a fresh retry count, so rate limiting never counts as a
  failure.
- ``ValidationError`` and ``NotFoundError`` are logged and dropped.
- ``TransportError``/``ParseError`` retry with exponential backoff until
  the attempt budget is spent; the message row then stays ``error``.
"""
import logging
import math
from typing import Any, Dict, Optional

from pulseboard.errors import (
    ConflictError, LimitError, NotFoundError, ParseError, TransportError, ValidationError,
)
from pulseboard.wiring import get_services
from pulseboard.workers import ClusterWorker, NLUWorker, SyncWorker
from .celery_app import celery_app

logger = logging.getLogger(__name__)


def requeue(services, event: str, payload: Dict[str, Any], error: LimitError) -> Dict[str, Any]:
    countdown = max(1, math.ceil(error.retry_after or services.settings.RETRY_BACKOFF_SECONDS))
    services.dispatcher.send(event, payload, countdown=countdown)
    logger.info(f"Rate limited, requeued {event} in {countdown}s: {error}")
    return {'requeued': True, 'countdown': countdown}


def retry_or_give_up(task, error: Exception, max_attempts: int, backoff_seconds: int,
                     event: str) -> Dict[str, Any]:
    """Retry ``task`` with exponential backoff or report exhaustion."""
    attempt = task.request.retries + 1
    if attempt >= max_attempts:
        logger.error(f"{event} failed permanently after {attempt} attempts: {error}")
        return {'failed': True, 'attempts': attempt, 'error': str(error)}

    countdown = backoff_seconds * (2 ** task.request.retries)
    logger.warning(f"{event} attempt {attempt}/{max_attempts} failed, retrying in {countdown}s: {error}")
    raise task.retry(exc=error, countdown=countdown, max_retries=max_attempts - 1)


def _dropped(event: str, error: Exception) -> Dict[str, Any]:
    logger.warning(f"Dropping {event}: {error}")
    return {'dropped': True, 'error': str(error)}


@celery_app.task(bind=True, name='message.received')
def message_received(self, raw_message_id: int, project_id: int, source_id: Optional[int] = None):
    """Forward a freshly stored message to processing."""
    services = get_services()
    services.dispatcher.send('message.process', {
        'raw_message_id': raw_message_id,
        'project_id': project_id
    })
    return {'queued': True}


@celery_app.task(bind=True, name='message.process')
def process_message(self, raw_message_id: int, project_id: int):
    services = get_services()
    payload = {'raw_message_id': raw_message_id, 'project_id': project_id}
    try:
        return NLUWorker(services).process_message(raw_message_id)
    except LimitError as e:
        return requeue(services, 'message.process', payload, e)
    except (ValidationError, NotFoundError) as e:
        return _dropped('message.process', e)
    except (TransportError, ParseError) as e:
        settings = services.settings
        return retry_or_give_up(self, e, settings.EXTRACTION_MAX_ATTEMPTS, settings.RETRY_BACKOFF_SECONDS,
                                'message.process')


@celery_app.task(bind=True, name='feedback.cluster')
def cluster_feedback(self, feedback_id: int, project_id: int):
    services = get_services()
    try:
        return ClusterWorker(services).cluster_feedback(feedback_id)
    except (ValidationError, NotFoundError) as e:
        return _dropped('feedback.cluster', e)
    except ConflictError as e:
        return retry_or_give_up(self, e, 3, services.settings.RETRY_BACKOFF_SECONDS, 'feedback.cluster')


@celery_app.task(bind=True, name='integration.sync')
def sync_integration(self, source_id: int, project_id: int, full_sync: bool = False):
    services = get_services()
    try:
        return SyncWorker(services).start_sync(source_id, full_sync=full_sync)
    except (ValidationError, NotFoundError) as e:
        return _dropped('integration.sync', e)


def _sync_page(task, event: str, payload: Dict[str, Any], page_token=None, channel=None):
    services = get_services()
    try:
        return SyncWorker(services).sync_page(payload['source_id'], page_token=page_token, channel=channel)
    except LimitError as e:
        return requeue(services, event, payload, e)
    except (ValidationError, NotFoundError) as e:
        return _dropped(event, e)
    except TransportError as e:
        return retry_or_give_up(task, e, 3, services.settings.RETRY_BACKOFF_SECONDS, event)


@celery_app.task(bind=True, name='integration.sync.paged')
def sync_integration_page(self, source_id: int, project_id: int, page_token: Optional[str] = None,
                          channel: Optional[str] = None):
    payload = {'source_id': source_id, 'project_id': project_id, 'page_token': page_token, 'channel': channel}
    return _sync_page(self, 'integration.sync.paged', payload, page_token=page_token, channel=channel)


@celery_app.task(bind=True, name='appstore.poll')
def poll_app_store(self):
    return SyncWorker(get_services()).poll_app_store()


@celery_app.task(bind=True, name='appstore.poll.one')
def poll_app_store_source(self, source_id: int, project_id: int):
    payload = {'source_id': source_id, 'project_id': project_id}
    return _sync_page(self, 'appstore.poll.one', payload)
