import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pulseboard.errors import LimitError, NotFoundError, ParseError, TransportError
from pulseboard.models.feedback import ExtractedFeedback
from pulseboard.models.processing_log import AIProcessingLog
from pulseboard.models.raw_message import RawMessage
from pulseboard.nlp.embedder import embedding_to_bytes
from pulseboard.nlp.extractor import ExtractedItem, items_from_payload
from pulseboard.nlp.prefilter import should_process

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ('processed', 'skipped')


def _now() -> datetime:
    return datetime.now(timezone.utc)


class NLUWorker:
    def __init__(self, services):
        """Initialize the NLU worker."""
        self.services = services
        self.extractor = services.extractor
        self.embedder = services.embedder
        self.dispatcher = services.dispatcher
        self.rate_limiter = services.rate_limiter

    def process_message(self, raw_message_id: int) -> Dict[str, Any]:
        """Run one raw message through pre-filter, extraction and the per-item steps.

        Raises ``TransportError``/``ParseError`` after marking the message
        ``error`` so the caller can retry, and ``LimitError`` after putting it
        back to ``pending``.
        """
        session = self.services.session_factory()
        try:
            message = session.get(RawMessage, raw_message_id)
            if message is None:
                raise NotFoundError(f"Raw message {raw_message_id} not found")

            if message.status in TERMINAL_STATUSES:
                logger.info(f"Raw message {raw_message_id} already {message.status}, nothing to do")
                return {'status': message.status, 'feedback_ids': self._feedback_ids(session, message)}

            message.status = 'processing'
            session.commit()

            if not should_process(message.content):
                message.status = 'skipped'
                message.processed_at = _now()
                session.commit()
                logger.info(f"Skipped raw message {raw_message_id}: no feedback keywords")
                return {'status': 'skipped', 'feedback_ids': []}

            items = self._extract(session, message)

            feedback_ids = []
            failed = 0
            for index, item in enumerate(items):
                try:
                    feedback = self._process_item(session, message, index, item)
                except LimitError:
                    raise
                except Exception as e:
                    # One bad item never fails its siblings
                    logger.error(f"Failed to process item {index} of raw message {raw_message_id}: {e}")
                    session.rollback()
                    failed += 1
                    continue

                feedback_ids.append(feedback.id)
                if feedback.embedding is not None and feedback.cluster_id is None:
                    self.dispatcher.send('feedback.cluster', {
                        'feedback_id': feedback.id,
                        'project_id': feedback.project_id
                    })

            message.status = 'processed'
            message.error_message = None
            message.processed_at = _now()
            session.commit()

            logger.info(f"Processed raw message {raw_message_id}: {len(feedback_ids)} feedback items, {failed} failed")
            return {'status': 'processed', 'feedback_ids': feedback_ids, 'failed_items': failed}

        except LimitError:
            session.rollback()
            self._set_status(session, raw_message_id, 'pending')
            raise
        finally:
            session.close()

    def _extract(self, session: Session, message: RawMessage) -> List[ExtractedItem]:
        """Return the checkpointed extraction or call the model and checkpoint it."""
        if message.extraction_payload is not None:
            logger.info(f"Reusing checkpointed extraction for raw message {message.id}")
            return items_from_payload(message.extraction_payload)

        self.rate_limiter.acquire('extraction')
        result = self.extractor.extract(message.content, self._context(message))

        self._log_call(
            session, message, 'extract_feedback', result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_cents=result.cost_cents,
            latency_ms=result.latency_ms,
            success=result.success,
            error_message=result.error
        )

        if not result.success:
            message.status = 'error'
            message.error_message = result.error
            message.processed_at = _now()
            session.commit()
            logger.warning(f"Extraction failed for raw message {message.id}: {result.error}")
            if result.error_kind == 'parse_error':
                raise ParseError(result.error)
            raise TransportError(result.error)

        message.extraction_payload = {
            'items': [item.to_dict() for item in result.items],
            'skip_reason': result.skip_reason
        }
        session.commit()
        return result.items

    def _process_item(self, session: Session, message: RawMessage, index: int,
                      item: ExtractedItem) -> ExtractedFeedback:
        """Embed and persist one item; safe to repeat for the same ``(message, index)``."""
        feedback = session.query(ExtractedFeedback).filter(
            ExtractedFeedback.raw_message_id == message.id,
            ExtractedFeedback.item_index == index
        ).first()
        if feedback is not None and feedback.embedding is not None:
            return feedback

        self.rate_limiter.acquire('embedding')
        result = self.embedder.embed_feedback(item.title, item.description)
        self._log_call(
            session, message, 'generate_embedding', result.model,
            input_tokens=result.tokens,
            cost_cents=result.cost_cents,
            latency_ms=result.latency_ms,
            success=result.success,
            error_message=result.error
        )
        embedding = embedding_to_bytes(result.vector) if result.success else None

        if feedback is not None:
            feedback.embedding = embedding
            session.commit()
            return feedback

        feedback = ExtractedFeedback(
            raw_message_id=message.id,
            project_id=message.project_id,
            item_index=index,
            type=item.type,
            title=item.title,
            description=item.description,
            quote=item.quote,
            confidence=item.confidence,
            sentiment=item.sentiment,
            urgency=item.urgency,
            embedding=embedding,
            customer_name=message.external_user_name,
            customer_email=message.external_user_email,
            review_status='pending'
        )
        try:
            session.add(feedback)
            session.commit()
        except IntegrityError:
            session.rollback()
            feedback = session.query(ExtractedFeedback).filter(
                ExtractedFeedback.raw_message_id == message.id,
                ExtractedFeedback.item_index == index
            ).one()
        return feedback

    def _context(self, message: RawMessage) -> Dict[str, Any]:
        source = message.integration_source
        return {
            'source': source.name if source else None,
            'channel': message.channel_name,
            'user_name': message.external_user_name
        }

    def _log_call(self, session: Session, message: RawMessage, operation: str, model: str,
                  input_tokens: int = 0, output_tokens: int = 0, cost_cents: float = 0.0,
                  latency_ms: int = 0, success: bool = True, error_message: Optional[str] = None):
        session.add(AIProcessingLog(
            project_id=message.project_id,
            raw_message_id=message.id,
            operation=operation,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_cents=cost_cents,
            latency_ms=latency_ms,
            success=success,
            error_message=error_message
        ))
        session.commit()

    def _feedback_ids(self, session: Session, message: RawMessage) -> List[int]:
        rows = session.query(ExtractedFeedback.id).filter(
            ExtractedFeedback.raw_message_id == message.id
        ).order_by(ExtractedFeedback.item_index).all()
        return [row.id for row in rows]

    def _set_status(self, session: Session, raw_message_id: int, status: str):
        message = session.get(RawMessage, raw_message_id)
        if message is not None:
            message.status = status
            session.commit()
