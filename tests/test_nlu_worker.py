"""
Tests for message processing: pre-filter, extraction checkpoint, per-item embedding
"""

import pytest

from pulseboard.errors import LimitError, ParseError, TransportError
from pulseboard.models.feedback import ExtractedFeedback
from pulseboard.models.processing_log import AIProcessingLog
from pulseboard.models.raw_message import RawMessage
from pulseboard.workers.nlu_worker import NLUWorker
from fakes import DARK_MODE_RESPONSE, extraction_response, feedback_item


def stored_message(db_session, message_id):
    db_session.expire_all()
    return db_session.get(RawMessage, message_id)


def test_messages_without_keywords_are_skipped(services, source, make_message, chat_client, db_session):
    message = make_message(source, content="See you at the standup tomorrow morning")

    result = NLUWorker(services).process_message(message.id)

    assert result == {'status': 'skipped', 'feedback_ids': []}
    assert chat_client.calls == []
    stored = stored_message(db_session, message.id)
    assert stored.status == 'skipped'
    assert stored.processed_at is not None


def test_extracts_embeds_and_queues_clustering(services, source, make_message, dispatcher, db_session):
    """A feedback message ends processed with one embedded row and a cluster job."""
    message = make_message(source)

    result = NLUWorker(services).process_message(message.id)

    assert result['status'] == 'processed'
    assert len(result['feedback_ids']) == 1
    feedback = db_session.get(ExtractedFeedback, result['feedback_ids'][0])
    assert feedback.title == "Add dark mode support"
    assert feedback.embedding is not None
    assert feedback.review_status == 'pending'
    assert dispatcher.events('feedback.cluster') == [
        {'feedback_id': feedback.id, 'project_id': message.project_id}
    ]

    logs = db_session.query(AIProcessingLog).order_by(AIProcessingLog.id).all()
    assert [log.operation for log in logs] == ['extract_feedback', 'generate_embedding']
    assert all(log.success for log in logs)
    assert logs[0].input_tokens == 120
    assert stored_message(db_session, message.id).status == 'processed'


def test_retries_until_success_store_one_feedback_set(services, source, make_message, chat_client, db_session):
    """Two transport failures then a success leave exactly one set of rows."""
    chat_client.responses = [TransportError("timeout"), TransportError("timeout"), DARK_MODE_RESPONSE]
    message = make_message(source)
    worker = NLUWorker(services)

    for _ in range(2):
        with pytest.raises(TransportError):
            worker.process_message(message.id)
        assert stored_message(db_session, message.id).status == 'error'

    result = worker.process_message(message.id)

    assert result['status'] == 'processed'
    assert db_session.query(ExtractedFeedback).filter_by(raw_message_id=message.id).count() == 1
    extract_logs = db_session.query(AIProcessingLog).filter_by(operation='extract_feedback').all()
    assert [log.success for log in extract_logs] == [False, False, True]


def test_replay_of_processed_message_is_a_no_op(services, source, make_message, chat_client, dispatcher):
    message = make_message(source)
    worker = NLUWorker(services)
    first = worker.process_message(message.id)

    second = worker.process_message(message.id)

    assert second == {'status': 'processed', 'feedback_ids': first['feedback_ids']}
    assert len(chat_client.calls) == 1
    assert len(dispatcher.events('feedback.cluster')) == 1


def test_checkpoint_avoids_second_model_call(services, source, make_message, chat_client, db_session):
    """A message that crashed after extraction resumes from its stored payload."""
    message = make_message(source, status='processing', extraction_payload={
        'items': [feedback_item(), feedback_item(title="Export crashes", type="bug_report")],
        'skip_reason': None
    })

    result = NLUWorker(services).process_message(message.id)

    assert chat_client.calls == []
    assert len(result['feedback_ids']) == 2
    titles = [fb.title for fb in db_session.query(ExtractedFeedback).order_by(ExtractedFeedback.item_index)]
    assert titles == ["Add dark mode support", "Export crashes"]


def test_embedding_failure_keeps_feedback(services, source, make_message, embedding_client, dispatcher, db_session):
    """Feedback is stored without a vector and never clustered."""
    embedding_client.failures = {'dark': TransportError("embedding service unavailable")}
    message = make_message(source)

    result = NLUWorker(services).process_message(message.id)

    assert result['status'] == 'processed'
    feedback = db_session.get(ExtractedFeedback, result['feedback_ids'][0])
    assert feedback.embedding is None
    assert dispatcher.events('feedback.cluster') == []
    log = db_session.query(AIProcessingLog).filter_by(operation='generate_embedding').one()
    assert log.success is False


def test_failed_item_does_not_fail_siblings(services, source, make_message, chat_client, embedding_client,
                                            dispatcher, db_session):
    chat_client.responses = [extraction_response(
        feedback_item(),
        feedback_item(title="Export crashes on large files", type="bug_report", description="")
    )]
    embedding_client.failures = {'Export': RuntimeError("malformed vector")}
    message = make_message(source)

    result = NLUWorker(services).process_message(message.id)

    assert result['status'] == 'processed'
    assert result['failed_items'] == 1
    assert len(result['feedback_ids']) == 1
    assert len(dispatcher.events('feedback.cluster')) == 1
    assert stored_message(db_session, message.id).status == 'processed'


def test_unparseable_response_marks_error(services, source, make_message, chat_client, db_session):
    chat_client.responses = ["Sorry, I cannot help with that."]
    message = make_message(source)

    with pytest.raises(ParseError):
        NLUWorker(services).process_message(message.id)

    stored = stored_message(db_session, message.id)
    assert stored.status == 'error'
    assert "parse" in stored.error_message
    assert stored.extraction_payload is None


def test_rate_limit_returns_message_to_pending(services, source, make_message, chat_client, db_session):
    chat_client.responses = [LimitError("slow down", retry_after=5)]
    message = make_message(source)

    with pytest.raises(LimitError):
        NLUWorker(services).process_message(message.id)

    assert stored_message(db_session, message.id).status == 'pending'


def test_no_feedback_is_processed_with_zero_items(services, source, make_message, chat_client, dispatcher,
                                                  db_session):
    chat_client.responses = [extraction_response(has_feedback=False, skip_reason="just a greeting")]
    message = make_message(source)

    result = NLUWorker(services).process_message(message.id)

    assert result['status'] == 'processed'
    assert result['feedback_ids'] == []
    assert dispatcher.sent == []
    assert stored_message(db_session, message.id).extraction_payload['skip_reason'] == "just a greeting"


def test_customer_details_are_copied(services, source, make_message, db_session):
    message = make_message(source, external_user_name="Dana", external_user_email="dana@example.com")

    result = NLUWorker(services).process_message(message.id)

    feedback = db_session.get(ExtractedFeedback, result['feedback_ids'][0])
    assert feedback.customer_name == "Dana"
    assert feedback.customer_email == "dana@example.com"
