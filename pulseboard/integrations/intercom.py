import hashlib
import hmac
import html
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .base import (
    BaseAdapter, CanonicalMessage, IntegrationAuthError, Page, SourceType,
    lower_headers, register, signatures_match,
)

logger = logging.getLogger(__name__)

INTERCOM_API_URL = "https://api.intercom.io"
INTERCOM_API_VERSION = "2.11"
CONVERSATION_TOPICS = ("conversation.user.replied", "conversation.user.created")
PAGE_SIZE = 50

_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_PARAGRAPH_END_RE = re.compile(r"</p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(body: str) -> str:
    """Reduce Intercom's HTML message bodies to plain text."""
    text = _BREAK_RE.sub("\n", body or "")
    text = _PARAGRAPH_END_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text).replace("\xa0", " ").strip()


def _timestamp(value) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _tag_names(tags) -> list:
    if isinstance(tags, dict):
        tags = tags.get('tags') or []
    return [tag.get('name') for tag in tags or [] if isinstance(tag, dict)]


@register(SourceType.INTERCOM)
class IntercomAdapter(BaseAdapter):

    @classmethod
    def matches(cls, source, event: Dict[str, Any]) -> bool:
        app_id = (source.config or {}).get('app_id')
        return not app_id or app_id == event.get('app_id')

    def validate_inbound(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        """Verify the ``X-Hub-Signature`` HMAC-SHA1 of the raw body."""
        client_secret = getattr(self.settings, 'INTERCOM_CLIENT_SECRET', None)
        if not client_secret:
            logger.error("INTERCOM_CLIENT_SECRET not configured")
            return False

        signature = lower_headers(headers).get('x-hub-signature', '')
        if not signature:
            return False

        expected = "sha1=" + hmac.new(client_secret.encode(), raw_body, hashlib.sha1).hexdigest()
        return signatures_match(expected, signature)

    def _message(self, external_id: str, item: dict, author: dict, body: str, created_at, **metadata) -> CanonicalMessage:
        return CanonicalMessage(
            external_id=external_id,
            external_thread_id=str(item.get('id')),
            external_user_id=author.get('id'),
            external_user_name=author.get('name') or None,
            external_user_email=author.get('email') or None,
            content=strip_html(body),
            channel_name='Intercom',
            message_timestamp=_timestamp(created_at),
            metadata={'conversation_id': item.get('id'), 'tags': _tag_names(item.get('tags')), **metadata},
        )

    def parse_inbound(self, event: Dict[str, Any]) -> List[CanonicalMessage]:
        """Extract the latest user-authored part of a conversation webhook."""
        if event.get('topic') not in CONVERSATION_TOPICS:
            return []

        item = (event.get('data') or {}).get('item') or {}
        if not item:
            return []

        parts = (item.get('conversation_parts') or {}).get('conversation_parts') or []
        user_parts = [part for part in parts if (part.get('author') or {}).get('type') == 'user']

        if not user_parts:
            # A new conversation only has its opening message
            source = item.get('source') or {}
            author = source.get('author') or {}
            if author.get('type') != 'user' or not source.get('body'):
                return []
            message = self._message(str(item.get('id')), item, author, source['body'], item.get('created_at'))
        else:
            latest = user_parts[-1]
            if not latest.get('body'):
                return []
            message = self._message(
                f"{item.get('id')}-{latest.get('id')}",
                item,
                latest.get('author') or {},
                latest['body'],
                latest.get('created_at'),
                part_type=latest.get('part_type'),
            )

        if not message.content or not self.should_process_message(message.content):
            return []
        return [message]

    def fetch_page(self, cursor: Optional[str] = None, channel: Optional[str] = None) -> Page:
        """Fetch one page of conversations, paginated by ``starting_after``."""
        if not self.source or not self.source.access_token:
            raise IntegrationAuthError("Intercom integration has no access token")

        params = {'per_page': PAGE_SIZE}
        if cursor:
            params['starting_after'] = cursor

        response = self._get(
            f"{INTERCOM_API_URL}/conversations",
            params=params,
            headers={
                'Authorization': f"Bearer {self.source.access_token}",
                'Accept': 'application/json',
                'Intercom-Version': INTERCOM_API_VERSION,
            },
        )
        data = response.json()

        messages = []
        for conversation in data.get('conversations') or []:
            source = conversation.get('source') or {}
            author = source.get('author') or {}
            if author.get('type') != 'user' or not source.get('body'):
                continue
            message = self._message(
                str(conversation.get('id')),
                conversation,
                author,
                source['body'],
                conversation.get('created_at'),
                state=conversation.get('state'),
                priority=conversation.get('priority'),
            )
            if message.content and self.should_process_message(message.content):
                messages.append(message)

        next_page = (data.get('pages') or {}).get('next') or {}
        next_cursor = next_page.get('starting_after') if isinstance(next_page, dict) else None
        return Page(messages=messages, next_cursor=next_cursor)
