import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import requests

from pulseboard.errors import TransportError, ValidationError

logger = logging.getLogger(__name__)


class SourceType(str, Enum):
    SLACK = "slack"
    INTERCOM = "intercom"
    APP_STORE = "app_store"


class IntegrationAuthError(TransportError):
    """The source rejected our credentials; the integration needs reconnecting."""
    pass


@dataclass
class CanonicalMessage:
    """A source message normalized to the shape stored as a ``RawMessage``."""
    external_id: str
    content: str
    external_thread_id: Optional[str] = None
    external_user_id: Optional[str] = None
    external_user_name: Optional[str] = None
    external_user_email: Optional[str] = None
    channel_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    message_timestamp: Optional[datetime] = None


@dataclass
class Page:
    messages: List[CanonicalMessage] = field(default_factory=list)
    next_cursor: Optional[str] = None


_REGISTRY: Dict[SourceType, type] = {}


def register(source_type: SourceType):
    """Class decorator binding an adapter class to its ``SourceType``."""
    def decorator(cls):
        cls.source_type = source_type
        _REGISTRY[source_type] = cls
        return cls
    return decorator


def get_adapter_class(source_type) -> type:
    try:
        return _REGISTRY[SourceType(source_type)]
    except (ValueError, KeyError):
        raise ValidationError(f"Unknown integration type: {source_type}")


def lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def signatures_match(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode(), received.encode())


class BaseAdapter:
    """Capability interface shared by every source connector."""

    source_type: SourceType

    def __init__(self, source=None, settings=None, http: Optional[requests.Session] = None):
        """
        Initialize the adapter.

        ``source`` is the ``IntegrationSource`` row (optional for signature
        checks), ``settings`` the config class and ``http`` a requests session.
        """
        self.source = source
        self.settings = settings
        self.http = http or requests.Session()
        self.timeout = getattr(settings, 'REQUEST_TIMEOUT', 30)

    @property
    def source_config(self) -> Dict[str, Any]:
        if self.source is None:
            return {}
        return self.source.config or {}

    @classmethod
    def matches(cls, source, event: Dict[str, Any]) -> bool:
        """Whether an inbound event is addressed to ``source``."""
        return False

    def should_process_message(self, content: str) -> bool:
        """Apply the integration's optional keyword filter."""
        keywords = self.source_config.get('keywords') or []
        if not keywords:
            return True
        lower_content = content.lower()
        return any(keyword.lower() in lower_content for keyword in keywords)

    def validate_inbound(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        return False

    def parse_inbound(self, event: Dict[str, Any]) -> List[CanonicalMessage]:
        return []

    def fetch_page(self, cursor: Optional[str] = None, channel: Optional[str] = None) -> Page:
        raise NotImplementedError

    def _get(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> requests.Response:
        """GET with the configured timeout, mapping network failures to ``TransportError``."""
        try:
            response = self.http.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"{self.source_type.value} request failed: {e}") from e

        if response.status_code in (401, 403):
            raise IntegrationAuthError(f"{self.source_type.value} rejected credentials ({response.status_code})")
        if response.status_code >= 400:
            raise TransportError(f"{self.source_type.value} returned HTTP {response.status_code}")
        return response
