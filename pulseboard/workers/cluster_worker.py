import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from pulseboard.errors import ConflictError, NotFoundError
from pulseboard.models.cluster import FeedbackCluster
from pulseboard.models.feedback import ExtractedFeedback
from pulseboard.nlp.embedder import bytes_to_embedding, cosine_similarity, embedding_to_bytes, update_centroid

logger = logging.getLogger(__name__)

TIE_EPSILON = 1e-9


@dataclass
class ClusterCandidate:
    cluster: FeedbackCluster
    similarity: float


def select_best_candidate(candidates: Sequence[ClusterCandidate],
                          threshold: float) -> Optional[ClusterCandidate]:
    """Pick the assignment target, or ``None`` when nothing reaches ``threshold``.

    Only candidates at or above ``threshold`` are eligible. Among those,
    candidates within ``TIE_EPSILON`` of the best similarity are ranked by
    larger ``member_count``, then lower cluster id.
    """
    eligible = [c for c in candidates if c.similarity >= threshold]
    if not eligible:
        return None

    best_similarity = max(c.similarity for c in eligible)
    tied = [c for c in eligible if best_similarity - c.similarity <= TIE_EPSILON]
    return min(tied, key=lambda c: (-c.cluster.member_count, c.cluster.id))


class ClusterWorker:
    def __init__(self, services):
        """Initialize the cluster worker."""
        self.services = services
        settings = services.settings
        self.similarity_threshold = settings.CLUSTER_SIMILARITY_THRESHOLD
        self.min_confidence = settings.CLUSTER_MIN_CONFIDENCE
        self.candidate_limit = settings.CLUSTER_CANDIDATES
        self.max_attempts = 3

    def find_similar_clusters(self, session: Session, project_id: int, embedding: np.ndarray,
                              limit: Optional[int] = None) -> List[ClusterCandidate]:
        """Top-K clusters of a project nearest to ``embedding`` by cosine similarity."""
        limit = limit or self.candidate_limit
        clusters = session.query(FeedbackCluster).filter(
            FeedbackCluster.project_id == project_id,
            FeedbackCluster.centroid_embedding.isnot(None)
        ).all()

        candidates = []
        for cluster in clusters:
            centroid = bytes_to_embedding(cluster.centroid_embedding)
            if centroid.shape != embedding.shape:
                logger.warning(f"Cluster {cluster.id} centroid has {centroid.shape[0]} dims, skipping")
                continue
            candidates.append(ClusterCandidate(cluster, cosine_similarity(embedding, centroid)))

        candidates.sort(key=lambda c: (-c.similarity, -c.cluster.member_count, c.cluster.id))
        return candidates[:limit]

    def cluster_feedback(self, feedback_id: int) -> Dict[str, Any]:
        """Assign one feedback row, retrying when a concurrent writer wins the cluster row."""
        for attempt in range(1, self.max_attempts + 1):
            session = self.services.session_factory()
            try:
                return self._assign(session, feedback_id)
            except StaleDataError:
                session.rollback()
                logger.warning(f"Cluster changed underneath feedback {feedback_id} (attempt {attempt}), retrying")
            finally:
                session.close()

        raise ConflictError(f"Could not cluster feedback {feedback_id} after {self.max_attempts} attempts")

    def _assign(self, session: Session, feedback_id: int) -> Dict[str, Any]:
        feedback = session.get(ExtractedFeedback, feedback_id)
        if feedback is None:
            raise NotFoundError(f"Feedback {feedback_id} not found")

        if feedback.cluster_id is not None:
            return {'clustered': True, 'cluster_id': feedback.cluster_id, 'already_assigned': True}

        if feedback.embedding is None:
            return {'clustered': False, 'reason': 'no_embedding'}

        embedding = bytes_to_embedding(feedback.embedding)
        candidates = self.find_similar_clusters(session, feedback.project_id, embedding)
        best = select_best_candidate(candidates, self.similarity_threshold)

        if best is not None:
            cluster = best.cluster
            old_centroid = bytes_to_embedding(cluster.centroid_embedding)
            cluster.centroid_embedding = embedding_to_bytes(
                update_centroid(old_centroid, embedding, cluster.member_count)
            )
            cluster.member_count += 1
            cluster.total_mentions += 1
            feedback.cluster_id = cluster.id
            session.commit()

            logger.info(f"Assigned feedback {feedback_id} to cluster {cluster.id} (similarity {best.similarity:.4f})")
            return {'clustered': True, 'cluster_id': cluster.id, 'similarity': best.similarity}

        if feedback.confidence >= self.min_confidence:
            cluster = FeedbackCluster(
                project_id=feedback.project_id,
                title=feedback.title,
                description=feedback.description,
                centroid_embedding=embedding_to_bytes(embedding),
                member_count=1,
                total_mentions=1,
                review_status='pending'
            )
            session.add(cluster)
            session.flush()
            feedback.cluster_id = cluster.id
            session.commit()

            logger.info(f"Created cluster {cluster.id} for feedback {feedback_id}")
            return {'clustered': True, 'cluster_id': cluster.id, 'new_cluster': True}

        logger.info(f"Left feedback {feedback_id} unclustered (confidence {feedback.confidence:.2f})")
        return {'clustered': False, 'reason': 'low_confidence'}
