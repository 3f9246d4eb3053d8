import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from pulseboard.errors import NotFoundError, TransportError
from pulseboard.integrations import IntegrationAuthError, SourceType, get_adapter
from pulseboard.models.integration_source import IntegrationSource
from pulseboard.models.raw_message import RawMessage
from .ingest_worker import IngestWorker

logger = logging.getLogger(__name__)


class SyncWorker:
    def __init__(self, services):
        """Initialize the sync worker."""
        self.services = services
        self.settings = services.settings
        self.dispatcher = services.dispatcher
        self.rate_limiter = services.rate_limiter
        self.ingest = IngestWorker(services)

    def _get_source(self, session: Session, source_id: int) -> IntegrationSource:
        source = session.get(IntegrationSource, source_id)
        if source is None:
            raise NotFoundError(f"Integration {source_id} not found")
        return source

    def start_sync(self, source_id: int, full_sync: bool = False) -> Dict[str, Any]:
        """Queue the first page of a sync; Slack gets one paged job per channel."""
        session = self.services.session_factory()
        try:
            source = self._get_source(session, source_id)
            if source.status == 'paused':
                logger.info(f"Integration {source_id} is paused, not syncing")
                return {'queued': 0, 'reason': 'paused'}

            if source.type == SourceType.SLACK.value:
                channels = (source.config or {}).get('channel_ids') or []
            else:
                channels = [None]

            for channel in channels:
                self.dispatcher.send('integration.sync.paged', {
                    'source_id': source.id,
                    'project_id': source.project_id,
                    'page_token': None,
                    'channel': channel
                })

            logger.info(f"Queued {len(channels)} sync jobs for integration {source_id} (full_sync={full_sync})")
            return {'queued': len(channels)}
        finally:
            session.close()

    def sync_page(self, source_id: int, page_token: Optional[str] = None,
                  channel: Optional[str] = None) -> Dict[str, Any]:
        """Fetch and store one page, then queue the next page and the pending sweep."""
        session = self.services.session_factory()
        try:
            source = self._get_source(session, source_id)
            if source.status == 'paused':
                return {'inserted': 0, 'reason': 'paused'}

            self.rate_limiter.acquire('sync')
            adapter = get_adapter(source.type, source=source, settings=self.settings, http=self.services.http)

            try:
                page = adapter.fetch_page(page_token, channel)
            except IntegrationAuthError as e:
                source.status = 'error'
                source.last_error = str(e)
                session.commit()
                logger.error(f"Integration {source_id} needs reconnecting: {e}")
                return {'inserted': 0, 'error': str(e)}
            except TransportError as e:
                source.last_error = str(e)
                session.commit()
                raise

            inserted = 0
            for message in page.messages:
                _, created = self.ingest.upsert_message(session, source, message)
                if created:
                    inserted += 1

            source.last_sync_at = datetime.now(timezone.utc)
            source.last_error = None
            session.commit()

            if page.next_cursor:
                self.dispatcher.send('integration.sync.paged', {
                    'source_id': source.id,
                    'project_id': source.project_id,
                    'page_token': page.next_cursor,
                    'channel': channel
                })

            queued = self.enqueue_pending(session, source)
            logger.info(
                f"Synced integration {source_id}: {len(page.messages)} fetched, {inserted} new, "
                f"{queued} queued, more={bool(page.next_cursor)}"
            )
            return {
                'fetched': len(page.messages),
                'inserted': inserted,
                'pending_processing': queued,
                'next_cursor': page.next_cursor
            }
        finally:
            session.close()

    def enqueue_pending(self, session: Session, source: IntegrationSource) -> int:
        """Queue processing for a bounded batch of the source's pending messages."""
        pending: List[RawMessage] = session.query(RawMessage).filter(
            RawMessage.integration_source_id == source.id,
            RawMessage.status == 'pending'
        ).order_by(RawMessage.id).limit(self.settings.SYNC_PENDING_BATCH).all()

        for message in pending:
            self.dispatcher.send('message.process', {
                'raw_message_id': message.id,
                'project_id': message.project_id
            })
        return len(pending)

    def poll_app_store(self) -> Dict[str, Any]:
        """Fan out one poll job per active App Store integration."""
        session = self.services.session_factory()
        try:
            sources = session.query(IntegrationSource).filter(
                IntegrationSource.type == SourceType.APP_STORE.value,
                IntegrationSource.status == 'active'
            ).order_by(IntegrationSource.id).all()

            triggered = 0
            for source in sources:
                if not (source.config or {}).get('app_id'):
                    logger.warning(f"App Store integration {source.id} has no app_id, skipping")
                    continue
                self.dispatcher.send('appstore.poll.one', {
                    'source_id': source.id,
                    'project_id': source.project_id
                })
                triggered += 1

            logger.info(f"Triggered App Store polling for {triggered} integrations")
            return {'triggered': triggered}
        finally:
            session.close()
