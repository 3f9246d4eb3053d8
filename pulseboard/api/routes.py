import json
import logging

from flask import Blueprint, current_app, jsonify, request

from pulseboard.errors import ValidationError
from pulseboard.integrations import SourceType, get_adapter
from pulseboard.wiring import get_services
from pulseboard.workers import ActionsWorker, IngestWorker

logger = logging.getLogger(__name__)

# Create blueprints
integrations_bp = Blueprint('integrations', __name__)
clusters_bp = Blueprint('clusters', __name__)
feedback_bp = Blueprint('feedback', __name__)
messages_bp = Blueprint('messages', __name__)


def _services():
    return current_app.extensions.get('pulseboard') or get_services()


def _json_body(raw_body: bytes) -> dict:
    try:
        body = json.loads(raw_body or b'{}')
    except ValueError:
        raise ValidationError("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _request_json() -> dict:
    return _json_body(request.get_data())


def _required_int(data: dict, key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} is required and must be an integer")
    return value


def _project_id_arg() -> int:
    project_id = request.args.get('project_id', type=int)
    if project_id is None:
        raise ValidationError("project_id query parameter is required")
    return project_id


# Inbound webhooks
@integrations_bp.route('/slack/events', methods=['POST'])
def slack_events():
    """Receive Slack Events API callbacks."""
    services = _services()
    raw_body = request.get_data()

    adapter = get_adapter(SourceType.SLACK, settings=services.settings)
    if not adapter.validate_inbound(request.headers, raw_body):
        logger.warning("Rejected Slack event with invalid signature")
        return jsonify({'error': 'Invalid signature'}), 401

    event = _json_body(raw_body)
    if event.get('type') == 'url_verification':
        return jsonify({'challenge': event.get('challenge')})

    stored = IngestWorker(services).ingest_webhook(SourceType.SLACK, event)
    return jsonify({'ok': True, 'stored': len(stored)})


@integrations_bp.route('/intercom/webhook', methods=['POST'])
def intercom_webhook():
    """Receive Intercom conversation webhooks."""
    services = _services()
    raw_body = request.get_data()

    adapter = get_adapter(SourceType.INTERCOM, settings=services.settings)
    if not adapter.validate_inbound(request.headers, raw_body):
        logger.warning("Rejected Intercom webhook with invalid signature")
        return jsonify({'error': 'Invalid signature'}), 401

    event = _json_body(raw_body)
    if event.get('topic') == 'ping':
        return jsonify({'ok': True})

    stored = IngestWorker(services).ingest_webhook(SourceType.INTERCOM, event)
    return jsonify({'ok': True, 'stored': len(stored)})


# Integrations
@integrations_bp.route('/<int:source_id>/sync', methods=['POST'])
def trigger_sync(source_id):
    """Queue a sync for one integration."""
    services = _services()
    status = ActionsWorker(services).integration_status(source_id)
    body = _request_json()

    services.dispatcher.send('integration.sync', {
        'source_id': source_id,
        'project_id': status['project_id'],
        'full_sync': bool(body.get('full_sync', False))
    })
    return jsonify({'queued': True, 'source_id': source_id}), 202


@integrations_bp.route('/<int:source_id>/status', methods=['GET'])
def integration_status(source_id):
    """Message counts per status and the last error for an integration."""
    return jsonify(ActionsWorker(_services()).integration_status(source_id))


# Clusters
@clusters_bp.route('', methods=['GET'])
def list_clusters():
    worker = ActionsWorker(_services())
    clusters = worker.list_clusters(_project_id_arg(), review_status=request.args.get('review_status'))
    return jsonify({'clusters': clusters, 'total': len(clusters)})


@clusters_bp.route('/<int:cluster_id>', methods=['GET'])
def get_cluster(cluster_id):
    return jsonify(ActionsWorker(_services()).get_cluster(cluster_id))


@clusters_bp.route('/<int:cluster_id>', methods=['PATCH'])
def update_cluster(cluster_id):
    """Dismiss, review, retitle or link a cluster."""
    return jsonify(ActionsWorker(_services()).update_cluster(cluster_id, _request_json()))


@clusters_bp.route('/<int:cluster_id>', methods=['DELETE'])
def delete_cluster(cluster_id):
    return jsonify(ActionsWorker(_services()).delete_cluster(cluster_id))


@clusters_bp.route('/<int:cluster_id>/merge', methods=['POST'])
def merge_clusters(cluster_id):
    """Merge ``source_cluster_id`` into this cluster."""
    source_cluster_id = _required_int(_request_json(), 'source_cluster_id')
    return jsonify(ActionsWorker(_services()).merge_clusters(cluster_id, source_cluster_id))


# Feedback
@feedback_bp.route('', methods=['GET'])
def list_feedback():
    worker = ActionsWorker(_services())
    feedback = worker.list_feedback(_project_id_arg(), review_status=request.args.get('review_status'))
    return jsonify({'feedback': feedback, 'total': len(feedback)})


@feedback_bp.route('/<int:feedback_id>/approve', methods=['POST'])
def approve_feedback(feedback_id):
    """Approve feedback into a roadmap item."""
    body = _request_json()
    overrides = {key: body[key] for key in ('title', 'description', 'status') if body.get(key)}
    result = ActionsWorker(_services()).approve_feedback(feedback_id, overrides)
    return jsonify(result), 201 if result['created'] else 200


@feedback_bp.route('/<int:feedback_id>/merge', methods=['POST'])
def merge_feedback(feedback_id):
    item_id = _required_int(_request_json(), 'item_id')
    return jsonify(ActionsWorker(_services()).merge_feedback_into_item(feedback_id, item_id))


@feedback_bp.route('/<int:feedback_id>/reject', methods=['POST'])
def reject_feedback(feedback_id):
    return jsonify(ActionsWorker(_services()).reject_feedback(feedback_id))


# Messages
@messages_bp.route('/<int:raw_message_id>/reprocess', methods=['POST'])
def reprocess_message(raw_message_id):
    """Reset a message and run it through the pipeline again."""
    return jsonify(ActionsWorker(_services()).reprocess_message(raw_message_id)), 202
