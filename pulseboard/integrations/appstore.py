import logging
import re
from calendar import timegm
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import feedparser

from pulseboard.errors import TransportError, ValidationError
from .base import BaseAdapter, CanonicalMessage, Page, SourceType, register

logger = logging.getLogger(__name__)

REVIEWS_URL = "https://itunes.apple.com/{country}/rss/customerreviews/page={page}/id={app_id}/sortBy=mostRecent/xml"
DEFAULT_MAX_PAGES = 10

_TAG_RE = re.compile(r"<[^>]*>")
_PAGE_RE = re.compile(r"^page=(\d+)$")


def parse_cursor(cursor: Optional[str]) -> int:
    """Cursors look like ``page=N``; no cursor means the first page."""
    if not cursor:
        return 1
    match = _PAGE_RE.match(cursor)
    if not match:
        raise ValidationError(f"Invalid App Store cursor: {cursor}")
    return int(match.group(1))


def _entry_body(entry) -> str:
    contents = entry.get('content') or []
    plain = [c for c in contents if c.get('type') == 'text/plain']
    chosen = (plain or contents or [{}])[0]
    return _TAG_RE.sub("", chosen.get('value', "")).strip()


def _entry_rating(entry) -> int:
    try:
        return int(entry.get('im_rating', 0))
    except (TypeError, ValueError):
        return 0


def _entry_timestamp(entry) -> Optional[datetime]:
    parsed = entry.get('updated_parsed')
    if not parsed:
        return None
    return datetime.fromtimestamp(timegm(parsed), tz=timezone.utc)


@register(SourceType.APP_STORE)
class AppStoreAdapter(BaseAdapter):
    """Polls the public customer-reviews feed; there is no inbound webhook."""

    @property
    def app_id(self) -> Optional[str]:
        return self.source_config.get('app_id')

    @property
    def country(self) -> str:
        return self.source_config.get('country') or getattr(self.settings, 'APP_STORE_COUNTRY', 'us')

    @property
    def max_pages(self) -> int:
        return getattr(self.settings, 'APP_STORE_MAX_PAGES', DEFAULT_MAX_PAGES)

    def parse_feed(self, document) -> List[CanonicalMessage]:
        return self.read_feed(document)[0]

    def read_feed(self, document) -> Tuple[List[CanonicalMessage], int]:
        """Parse one feed page into messages plus the number of reviews it held before filtering."""
        feed = feedparser.parse(document)
        if feed.bozo and not feed.entries:
            raise TransportError(f"Unreadable App Store feed: {feed.bozo_exception}")

        messages = []
        review_count = 0
        for entry in feed.entries:
            review_id = entry.get('id')
            body = _entry_body(entry)
            # The first entry of a page describes the app itself and has no review body
            if not review_id or not body:
                continue
            review_count += 1

            title = entry.get('title', '').strip()
            content = f"{title}\n\n{body}" if title else body
            if not self.should_process_message(content):
                continue

            messages.append(CanonicalMessage(
                external_id=review_id,
                external_user_name=entry.get('author') or 'Anonymous',
                content=content,
                channel_name='App Store',
                message_timestamp=_entry_timestamp(entry),
                metadata={
                    'rating': _entry_rating(entry),
                    'type': 'app_store_review',
                },
            ))
        return messages, review_count

    def fetch_page(self, cursor: Optional[str] = None, channel: Optional[str] = None) -> Page:
        """Fetch one page of reviews, following ``page=N`` up to the page cap."""
        if not self.app_id:
            raise TransportError("App Store integration has no app_id configured")

        page = parse_cursor(cursor)
        url = REVIEWS_URL.format(country=self.country, page=page, app_id=self.app_id)
        response = self._get(url)
        messages, review_count = self.read_feed(response.content)

        # A page whose reviews were all filtered out still has a successor
        next_cursor = None
        if review_count and page < self.max_pages:
            next_cursor = f"page={page + 1}"

        logger.info(
            f"Fetched {review_count} App Store reviews for app {self.app_id} (page {page}), {len(messages)} kept"
        )
        return Page(messages=messages, next_cursor=next_cursor)

    def parse_inbound(self, event: Dict[str, Any]):
        return []
