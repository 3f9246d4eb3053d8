import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pulseboard.errors import TransportError
from .base import (
    BaseAdapter, CanonicalMessage, IntegrationAuthError, Page, SourceType,
    lower_headers, register, signatures_match,
)

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"
REPLAY_WINDOW_SECONDS = 300
HISTORY_PAGE_SIZE = 100


def _timestamp(ts: Optional[str]) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _is_user_message(message: Dict[str, Any]) -> bool:
    # Bot posts, joins, edits and other system events carry a subtype or bot_id
    return not message.get('subtype') and not message.get('bot_id') and bool(message.get('text'))


@register(SourceType.SLACK)
class SlackAdapter(BaseAdapter):

    @classmethod
    def matches(cls, source, event: Dict[str, Any]) -> bool:
        config = source.config or {}
        team_id = config.get('team_id')
        if team_id and team_id != event.get('team_id'):
            return False
        channel_ids = config.get('channel_ids') or []
        channel = (event.get('event') or {}).get('channel')
        return not channel_ids or channel in channel_ids

    def validate_inbound(self, headers: Mapping[str, str], raw_body: bytes, now: Optional[float] = None) -> bool:
        """Verify the request signature and reject replays older than five minutes."""
        signing_secret = getattr(self.settings, 'SLACK_SIGNING_SECRET', None)
        if not signing_secret:
            logger.error("SLACK_SIGNING_SECRET not configured")
            return False

        headers = lower_headers(headers)
        timestamp = headers.get('x-slack-request-timestamp', '')
        signature = headers.get('x-slack-signature', '')
        if not timestamp or not signature:
            return False

        try:
            timestamp_seconds = int(timestamp)
        except ValueError:
            return False

        current = time.time() if now is None else now
        if abs(int(current) - timestamp_seconds) > REPLAY_WINDOW_SECONDS:
            logger.warning("Rejected Slack request outside the replay window")
            return False

        sig_basestring = f"v0:{timestamp}:".encode() + raw_body
        expected = "v0=" + hmac.new(signing_secret.encode(), sig_basestring, hashlib.sha256).hexdigest()
        return signatures_match(expected, signature)

    def parse_inbound(self, event: Dict[str, Any]) -> List[CanonicalMessage]:
        """Turn an Events API envelope into zero or one message."""
        if event.get('type') != 'event_callback':
            return []

        inner = event.get('event') or {}
        if inner.get('type') != 'message' or not _is_user_message(inner):
            return []

        text = inner['text']
        if not self.should_process_message(text):
            return []

        return [CanonicalMessage(
            external_id=inner['ts'],
            external_thread_id=inner.get('thread_ts'),
            external_user_id=inner.get('user'),
            content=text,
            channel_name=inner.get('channel'),
            message_timestamp=_timestamp(inner.get('ts')),
            metadata={
                'channel_type': inner.get('channel_type'),
                'team': inner.get('team') or event.get('team_id'),
            },
        )]

    def fetch_page(self, cursor: Optional[str] = None, channel: Optional[str] = None) -> Page:
        """Fetch one page of channel history."""
        if not channel:
            raise TransportError("Slack history sync needs a channel id")
        if not self.source or not self.source.access_token:
            raise IntegrationAuthError("Slack integration has no access token")

        params = {'channel': channel, 'limit': HISTORY_PAGE_SIZE}
        if cursor:
            params['cursor'] = cursor

        response = self._get(
            f"{SLACK_API_URL}/conversations.history",
            params=params,
            headers={'Authorization': f"Bearer {self.source.access_token}"},
        )
        data = response.json()

        if not data.get('ok'):
            error = data.get('error', 'unknown_error')
            if error in ('token_expired', 'token_revoked', 'invalid_auth', 'not_authed'):
                raise IntegrationAuthError(f"Slack API error: {error}")
            raise TransportError(f"Slack API error: {error}")

        messages = []
        for message in data.get('messages') or []:
            if not _is_user_message(message) or not self.should_process_message(message['text']):
                continue
            messages.append(CanonicalMessage(
                external_id=message['ts'],
                external_thread_id=message.get('thread_ts'),
                external_user_id=message.get('user'),
                content=message['text'],
                channel_name=channel,
                message_timestamp=_timestamp(message.get('ts')),
                metadata={
                    'reactions': message.get('reactions'),
                    'reply_count': message.get('reply_count'),
                },
            ))

        next_cursor = None
        if data.get('has_more'):
            next_cursor = (data.get('response_metadata') or {}).get('next_cursor') or None

        return Page(messages=messages, next_cursor=next_cursor)
