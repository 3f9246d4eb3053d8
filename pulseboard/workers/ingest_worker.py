import logging
from typing import Any, Dict, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pulseboard.integrations import CanonicalMessage, SourceType, get_adapter, get_adapter_class
from pulseboard.models.integration_source import IntegrationSource
from pulseboard.models.raw_message import RawMessage

logger = logging.getLogger(__name__)


class IngestWorker:
    def __init__(self, services):
        """Initialize the ingest worker."""
        self.services = services
        self.settings = services.settings
        self.dispatcher = services.dispatcher

    def upsert_message(self, session: Session, source: IntegrationSource,
                       message: CanonicalMessage) -> Tuple[RawMessage, bool]:
        """Insert a raw message unless ``(source, external_id)`` already exists.

        Returns the stored row and whether it was created by this call.
        """
        existing = session.query(RawMessage).filter(
            RawMessage.integration_source_id == source.id,
            RawMessage.external_id == message.external_id
        ).first()
        if existing:
            logger.debug(f"Duplicate message {message.external_id} from source {source.id}")
            return existing, False

        raw_message = RawMessage(
            integration_source_id=source.id,
            project_id=source.project_id,
            external_id=message.external_id,
            external_thread_id=message.external_thread_id,
            external_user_id=message.external_user_id,
            external_user_name=message.external_user_name,
            external_user_email=message.external_user_email,
            content=message.content,
            channel_name=message.channel_name,
            source_metadata=message.metadata,
            message_timestamp=message.message_timestamp,
            status='pending'
        )

        try:
            session.add(raw_message)
            session.commit()
        except IntegrityError:
            # A concurrent delivery inserted the same key first
            session.rollback()
            existing = session.query(RawMessage).filter(
                RawMessage.integration_source_id == source.id,
                RawMessage.external_id == message.external_id
            ).one()
            return existing, False

        logger.info(f"Stored raw message {raw_message.id} from source {source.id}")
        return raw_message, True

    def find_sources(self, session: Session, source_type: SourceType,
                     event: Dict[str, Any]) -> List[IntegrationSource]:
        """Active integrations addressed by an inbound event, one per project."""
        adapter_class = get_adapter_class(source_type)
        candidates = session.query(IntegrationSource).filter(
            IntegrationSource.type == SourceType(source_type).value,
            IntegrationSource.status == 'active'
        ).order_by(IntegrationSource.id).all()

        matched = {}
        for source in candidates:
            if source.project_id in matched:
                continue
            if adapter_class.matches(source, event):
                matched[source.project_id] = source
        return list(matched.values())

    def ingest_webhook(self, source_type: SourceType, event: Dict[str, Any]) -> List[int]:
        """Store every message an inbound event carries and queue the new ones."""
        session = self.services.session_factory()
        created_ids = []
        try:
            sources = self.find_sources(session, source_type, event)
            if not sources:
                logger.info(f"No active {SourceType(source_type).value} integration matches inbound event")
                return []

            for source in sources:
                adapter = get_adapter(source.type, source=source, settings=self.settings, http=self.services.http)
                for message in adapter.parse_inbound(event):
                    raw_message, created = self.upsert_message(session, source, message)
                    if not created:
                        continue
                    created_ids.append(raw_message.id)
                    self.dispatcher.send('message.received', {
                        'raw_message_id': raw_message.id,
                        'project_id': raw_message.project_id,
                        'source_id': source.id
                    })

            return created_ids
        finally:
            session.close()
