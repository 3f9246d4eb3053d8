import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from pulseboard.errors import ConflictError, NotFoundError, ValidationError
from pulseboard.models.cluster import CLUSTER_REVIEW_STATUSES, FeedbackCluster
from pulseboard.models.feedback import REVIEW_STATUSES, ExtractedFeedback
from pulseboard.models.integration_source import IntegrationSource
from pulseboard.models.raw_message import MESSAGE_STATUSES, RawMessage
from pulseboard.models.roadmap_item import RoadmapItem
from pulseboard.nlp.embedder import bytes_to_embedding, calculate_centroid, embedding_to_bytes

logger = logging.getLogger(__name__)

CLUSTER_UPDATE_FIELDS = ('review_status', 'title', 'description', 'linked_item_id')
REPROCESSABLE_STATUSES = ('error', 'skipped', 'processed')


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ActionsWorker:
    """Synchronous review and maintenance operations.

    Every operation runs in one transaction and either applies fully or not
    at all. Cluster writes are version checked and retried a bounded number
    of times when they lose a race.
    """

    def __init__(self, services):
        """Initialize the actions worker."""
        self.services = services
        self.dispatcher = services.dispatcher
        self.max_attempts = 3

    def _run(self, operation: Callable[[Session], Any], description: str) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            session = self.services.session_factory()
            try:
                return operation(session)
            except StaleDataError:
                session.rollback()
                logger.warning(f"Concurrent update during {description} (attempt {attempt}), retrying")
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        raise ConflictError(f"{description} kept conflicting with concurrent updates")

    def _get(self, session: Session, model, object_id: int, label: str):
        obj = session.get(model, object_id)
        if obj is None:
            raise NotFoundError(f"{label} {object_id} not found")
        return obj

    # Clusters

    def list_clusters(self, project_id: int, review_status: Optional[str] = None) -> List[Dict[str, Any]]:
        session = self.services.session_factory()
        try:
            query = session.query(FeedbackCluster).filter(FeedbackCluster.project_id == project_id)
            if review_status:
                query = query.filter(FeedbackCluster.review_status == review_status)
            clusters = query.order_by(FeedbackCluster.total_mentions.desc(), FeedbackCluster.id).all()
            return [cluster.to_dict() for cluster in clusters]
        finally:
            session.close()

    def get_cluster(self, cluster_id: int) -> Dict[str, Any]:
        session = self.services.session_factory()
        try:
            cluster = self._get(session, FeedbackCluster, cluster_id, "Cluster")
            data = cluster.to_dict()
            members = session.query(ExtractedFeedback).filter(
                ExtractedFeedback.cluster_id == cluster.id
            ).order_by(ExtractedFeedback.id).all()
            data['feedback'] = [member.to_dict() for member in members]
            return data
        finally:
            session.close()

    def merge_clusters(self, target_id: int, source_id: int) -> Dict[str, Any]:
        """Fold ``source`` into ``target`` and delete ``source``."""
        if target_id == source_id:
            raise ConflictError("Cannot merge a cluster into itself")

        def operation(session: Session):
            target = self._get(session, FeedbackCluster, target_id, "Target cluster")
            source = self._get(session, FeedbackCluster, source_id, "Source cluster")
            if target.project_id != source.project_id:
                raise ConflictError("Clusters belong to different projects")

            for member in list(source.feedback):
                member.cluster = target
            session.flush()

            vectors = [
                bytes_to_embedding(row.embedding)
                for row in session.query(ExtractedFeedback.embedding).filter(
                    ExtractedFeedback.cluster_id == target.id,
                    ExtractedFeedback.embedding.isnot(None)
                )
            ]
            if vectors:
                target.centroid_embedding = embedding_to_bytes(calculate_centroid(vectors))
            target.member_count += source.member_count
            target.total_mentions += source.total_mentions
            if target.linked_item_id is None:
                target.linked_item_id = source.linked_item_id

            session.delete(source)
            session.commit()
            logger.info(f"Merged cluster {source_id} into {target_id}")
            return target.to_dict()

        return self._run(operation, f"merge of cluster {source_id} into {target_id}")

    def update_cluster(self, cluster_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Change review status, title, description or roadmap link."""
        unknown = set(changes) - set(CLUSTER_UPDATE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported cluster fields: {', '.join(sorted(unknown))}")
        if 'review_status' in changes and changes['review_status'] not in CLUSTER_REVIEW_STATUSES:
            raise ValidationError(f"review_status must be one of {CLUSTER_REVIEW_STATUSES}")
        if 'title' in changes and not (isinstance(changes['title'], str) and changes['title'].strip()):
            raise ValidationError("title must be a non-empty string")

        def operation(session: Session):
            cluster = self._get(session, FeedbackCluster, cluster_id, "Cluster")

            if 'linked_item_id' in changes and changes['linked_item_id'] is not None:
                item = self._get(session, RoadmapItem, changes['linked_item_id'], "Roadmap item")
                if item.project_id != cluster.project_id:
                    raise ConflictError("Roadmap item belongs to a different project")

            for field_name, value in changes.items():
                setattr(cluster, field_name, value.strip() if field_name == 'title' else value)
            session.commit()
            return cluster.to_dict()

        return self._run(operation, f"update of cluster {cluster_id}")

    def delete_cluster(self, cluster_id: int) -> Dict[str, Any]:
        """Unlink every member and delete the cluster; members survive unclustered."""
        def operation(session: Session):
            cluster = self._get(session, FeedbackCluster, cluster_id, "Cluster")
            members = list(cluster.feedback)
            for member in members:
                member.cluster = None
            session.flush()
            session.delete(cluster)
            session.commit()
            logger.info(f"Deleted cluster {cluster_id}, unlinked {len(members)} feedback items")
            return {'deleted': True, 'unlinked_feedback': len(members)}

        return self._run(operation, f"deletion of cluster {cluster_id}")

    # Feedback review

    def list_feedback(self, project_id: int, review_status: Optional[str] = None) -> List[Dict[str, Any]]:
        if review_status and review_status not in REVIEW_STATUSES:
            raise ValidationError(f"review_status must be one of {REVIEW_STATUSES}")

        session = self.services.session_factory()
        try:
            query = session.query(ExtractedFeedback).filter(ExtractedFeedback.project_id == project_id)
            if review_status:
                query = query.filter(ExtractedFeedback.review_status == review_status)
            return [fb.to_dict() for fb in query.order_by(ExtractedFeedback.created_at.desc(), ExtractedFeedback.id.desc()).all()]
        finally:
            session.close()

    def approve_feedback(self, feedback_id: int, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create a roadmap item from feedback. Approving twice returns the same item."""
        overrides = overrides or {}

        def operation(session: Session):
            feedback = self._get(session, ExtractedFeedback, feedback_id, "Feedback")
            if feedback.review_status == 'merged':
                raise ConflictError("Feedback was already merged into another item")

            item = None
            if feedback.created_item_id is not None:
                item = session.get(RoadmapItem, feedback.created_item_id)
            if item is None:
                item = session.query(RoadmapItem).filter(RoadmapItem.source_feedback_id == feedback.id).first()
            if item is not None and feedback.review_status == 'approved':
                return {'item': item.to_dict(), 'feedback': feedback.to_dict(), 'created': False}

            created = item is None
            if created:
                item = RoadmapItem(
                    project_id=feedback.project_id,
                    title=overrides.get('title') or feedback.title,
                    description=overrides.get('description') or feedback.description,
                    status=overrides.get('status') or 'considering',
                    source_type='ai_extracted',
                    source_feedback_id=feedback.id
                )
                session.add(item)
                session.flush()

            feedback.review_status = 'approved'
            feedback.created_item_id = item.id
            feedback.reviewed_at = _now()

            if feedback.cluster_id is not None:
                cluster = session.get(FeedbackCluster, feedback.cluster_id)
                cluster.linked_item_id = item.id
                cluster.review_status = 'reviewed'

            session.commit()
            logger.info(f"Approved feedback {feedback_id} as roadmap item {item.id}")
            return {'item': item.to_dict(), 'feedback': feedback.to_dict(), 'created': created}

        try:
            return self._run(operation, f"approval of feedback {feedback_id}")
        except IntegrityError:
            # A concurrent approval created the item first
            logger.info(f"Feedback {feedback_id} approved concurrently, returning existing item")
            return self._run(operation, f"approval of feedback {feedback_id}")

    def merge_feedback_into_item(self, feedback_id: int, item_id: int) -> Dict[str, Any]:
        """Attach feedback to an existing roadmap item of the same project."""
        def operation(session: Session):
            feedback = self._get(session, ExtractedFeedback, feedback_id, "Feedback")
            item = self._get(session, RoadmapItem, item_id, "Roadmap item")
            if item.project_id != feedback.project_id:
                raise NotFoundError(f"Roadmap item {item_id} not found in this project")

            if feedback.review_status == 'merged':
                if feedback.merged_into_item_id == item.id:
                    return {'item': item.to_dict(), 'feedback': feedback.to_dict()}
                raise ConflictError("Feedback was already merged into another item")

            feedback.review_status = 'merged'
            feedback.merged_into_item_id = item.id
            feedback.reviewed_at = _now()

            if feedback.cluster_id is not None:
                cluster = session.get(FeedbackCluster, feedback.cluster_id)
                if cluster.linked_item_id is None:
                    cluster.linked_item_id = item.id

            session.commit()
            logger.info(f"Merged feedback {feedback_id} into roadmap item {item_id}")
            return {'item': item.to_dict(), 'feedback': feedback.to_dict()}

        return self._run(operation, f"merge of feedback {feedback_id}")

    def reject_feedback(self, feedback_id: int) -> Dict[str, Any]:
        def operation(session: Session):
            feedback = self._get(session, ExtractedFeedback, feedback_id, "Feedback")
            feedback.review_status = 'rejected'
            feedback.reviewed_at = _now()
            session.commit()
            return feedback.to_dict()

        return self._run(operation, f"rejection of feedback {feedback_id}")

    # Messages and integrations

    def reprocess_message(self, raw_message_id: int) -> Dict[str, Any]:
        """Reset a finished message to ``pending``, drop its checkpoint and queue it again."""
        session = self.services.session_factory()
        try:
            message = self._get(session, RawMessage, raw_message_id, "Raw message")
            if message.status not in REPROCESSABLE_STATUSES:
                raise ConflictError(f"Raw message {raw_message_id} is {message.status}, cannot reprocess")

            message.status = 'pending'
            message.error_message = None
            message.extraction_payload = None
            message.processed_at = None
            session.commit()

            self.dispatcher.send('message.process', {
                'raw_message_id': message.id,
                'project_id': message.project_id
            })
            logger.info(f"Queued raw message {raw_message_id} for reprocessing")
            return {'raw_message_id': message.id, 'status': message.status}
        finally:
            session.close()

    def integration_status(self, source_id: int) -> Dict[str, Any]:
        """Message counts per status plus the integration's sync bookkeeping."""
        session = self.services.session_factory()
        try:
            source = self._get(session, IntegrationSource, source_id, "Integration")
            rows = session.query(RawMessage.status, func.count(RawMessage.id)).filter(
                RawMessage.integration_source_id == source.id
            ).group_by(RawMessage.status).all()

            counts = {status: 0 for status in MESSAGE_STATUSES}
            counts.update({status: count for status, count in rows})

            last_message_error = session.query(RawMessage.error_message).filter(
                RawMessage.integration_source_id == source.id,
                RawMessage.status == 'error'
            ).order_by(RawMessage.processed_at.desc(), RawMessage.id.desc()).first()

            return {
                'id': source.id,
                'project_id': source.project_id,
                'type': source.type,
                'name': source.name,
                'status': source.status,
                'last_sync_at': source.last_sync_at.isoformat() if source.last_sync_at else None,
                'last_error': source.last_error or (last_message_error[0] if last_message_error else None),
                'message_counts': counts
            }
        finally:
            session.close()
