from .base import (
    BaseAdapter, CanonicalMessage, IntegrationAuthError, Page, SourceType, get_adapter_class,
)
# Importing the adapters registers them
from .slack import SlackAdapter
from .intercom import IntercomAdapter
from .appstore import AppStoreAdapter


def get_adapter(source_type, source=None, settings=None, http=None) -> BaseAdapter:
    """Build the adapter registered for ``source_type``."""
    return get_adapter_class(source_type)(source=source, settings=settings, http=http)


__all__ = [
    'BaseAdapter', 'CanonicalMessage', 'IntegrationAuthError', 'Page', 'SourceType',
    'SlackAdapter', 'IntercomAdapter', 'AppStoreAdapter', 'get_adapter', 'get_adapter_class'
]
