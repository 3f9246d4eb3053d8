"""
Tests for Celery wiring and the task retry policy
"""

from types import SimpleNamespace

import pytest

from pulseboard.errors import LimitError, ParseError
from pulseboard.models.raw_message import RawMessage
from pulseboard.tasks.celery_app import celery_app
from pulseboard.tasks.dispatcher import CeleryDispatcher
from pulseboard.tasks.pipeline_tasks import (
    cluster_feedback, message_received, poll_app_store, process_message, retry_or_give_up, sync_integration_page,
)
from pulseboard.wiring import set_services


@pytest.fixture
def installed(services):
    set_services(services)
    yield services
    set_services(None)


class RetryRequested(Exception):
    pass


def fake_task(retries):
    calls = []

    def retry(exc, countdown, max_retries):
        calls.append({'countdown': countdown, 'max_retries': max_retries})
        return RetryRequested(exc)

    return SimpleNamespace(request=SimpleNamespace(retries=retries), retry=retry, calls=calls)


def test_celery_delivery_settings():
    """Tasks are acknowledged late and redelivered when a worker dies."""
    assert celery_app.conf.task_acks_late is True
    assert celery_app.conf.task_reject_on_worker_lost is True
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_serializer == 'json'
    assert celery_app.conf.beat_schedule['poll-app-store-hourly']['task'] == 'appstore.poll'


def test_every_event_has_a_task():
    for name in ('message.received', 'message.process', 'feedback.cluster', 'integration.sync',
                 'integration.sync.paged', 'appstore.poll', 'appstore.poll.one'):
        assert name in celery_app.tasks


def test_retry_backs_off_exponentially():
    task = fake_task(retries=1)

    with pytest.raises(RetryRequested):
        retry_or_give_up(task, ParseError("bad json"), max_attempts=3, backoff_seconds=30, event='message.process')

    assert task.calls == [{'countdown': 60, 'max_retries': 2}]


def test_retry_gives_up_after_budget():
    task = fake_task(retries=2)

    result = retry_or_give_up(task, ParseError("bad json"), max_attempts=3, backoff_seconds=30,
                              event='message.process')

    assert result == {'failed': True, 'attempts': 3, 'error': "bad json"}
    assert task.calls == []


def test_rate_limited_message_is_requeued(installed, source, make_message, chat_client, dispatcher, db_session):
    """A rate limit schedules the same event again without spending an attempt."""
    chat_client.responses = [LimitError("slow down", retry_after=2.5)]
    message = make_message(source)

    result = process_message.run(raw_message_id=message.id, project_id=message.project_id)

    assert result == {'requeued': True, 'countdown': 3}
    assert dispatcher.sent == [
        ('message.process', {'raw_message_id': message.id, 'project_id': message.project_id}, 3)
    ]
    db_session.expire_all()
    assert db_session.get(RawMessage, message.id).status == 'pending'


def test_parse_failure_is_retried(installed, source, make_message, chat_client):
    chat_client.responses = ["no json here"]
    message = make_message(source)

    # Outside a worker Celery's retry re-raises the original error
    with pytest.raises(ParseError):
        process_message.run(raw_message_id=message.id, project_id=message.project_id)


def test_missing_records_are_dropped(installed):
    assert process_message.run(raw_message_id=404, project_id=1)['dropped'] is True
    assert cluster_feedback.run(feedback_id=404, project_id=1)['dropped'] is True


def test_malformed_page_token_is_dropped(installed, project, make_source, http):
    """A cursor the adapter cannot read is not worth retrying."""
    source = make_source(project, type='app_store', config={'app_id': '123'})

    result = sync_integration_page.run(source_id=source.id, project_id=project.id, page_token="offset=4")

    assert result['dropped'] is True
    assert http.requests == []


def test_received_message_is_forwarded(installed, dispatcher):
    message_received.run(raw_message_id=7, project_id=1, source_id=3)
    assert dispatcher.events('message.process') == [{'raw_message_id': 7, 'project_id': 1}]


def test_app_store_poll_task(installed, project, make_source, dispatcher):
    make_source(project, type='app_store', config={'app_id': '123'})
    assert poll_app_store.run() == {'triggered': 1}


def test_dispatcher_prefers_registered_tasks():
    sent = []
    task = SimpleNamespace(apply_async=lambda kwargs, countdown: sent.append(('task', kwargs, countdown))
                           or SimpleNamespace(id="local"))
    app = SimpleNamespace(
        tasks={'message.process': task},
        send_task=lambda name, kwargs, countdown: sent.append((name, kwargs, countdown))
        or SimpleNamespace(id="remote")
    )
    dispatcher = CeleryDispatcher(app)

    assert dispatcher.send('message.process', {'raw_message_id': 1}, countdown=5) == "local"
    assert dispatcher.send('integration.sync', {'source_id': 2}) == "remote"
    assert sent == [('task', {'raw_message_id': 1}, 5), ('integration.sync', {'source_id': 2}, None)]
