"""
Celery configuration for the feedback pipeline.

Run a worker with:  celery -A pulseboard.tasks.celery_app worker -l info
Run the scheduler:  celery -A pulseboard.tasks.celery_app beat -l info
"""
import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init

from config.config import get_config

settings = get_config()

celery_app = Celery(
    "pulseboard",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['pulseboard.tasks.pipeline_tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_acks_late=True,  # At-least-once: ack only after the task body finishes
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    'poll-app-store-hourly': {
        'task': 'appstore.poll',
        'schedule': crontab(minute=0),
    },
}

_logger = logging.getLogger(__name__)


@worker_process_init.connect
def _init_worker_services(**kwargs):
    """Give each worker process its own database engine and clients."""
    from pulseboard.wiring import build_services, set_services

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    set_services(build_services(settings))
    _logger.info("Worker services initialized")
