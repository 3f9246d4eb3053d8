"""Builds the service handles every worker receives.

Workers never construct clients themselves; tests hand them a ``Services``
with fakes instead.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
from sqlalchemy.orm import sessionmaker

from config.config import Config, get_config
from pulseboard.models.database import make_engine, make_session_factory
from pulseboard.nlp.embedder import OpenAIEmbeddingClient, SentenceTransformerClient, TextEmbedder
from pulseboard.nlp.extractor import FeedbackExtractor, OpenAIChatClient
from pulseboard.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Any
    session_factory: sessionmaker
    extractor: FeedbackExtractor
    embedder: TextEmbedder
    dispatcher: Any
    rate_limiter: RateLimiter
    http: requests.Session


def build_embedder(settings) -> TextEmbedder:
    if settings.EMBEDDING_BACKEND == 'sentence-transformers':
        client = SentenceTransformerClient(settings.EMBEDDING_MODEL)
    else:
        client = OpenAIEmbeddingClient(
            api_key=settings.OPENAI_API_KEY,
            model=settings.EMBEDDING_MODEL,
            timeout=settings.REQUEST_TIMEOUT
        )
    return TextEmbedder(
        client,
        model=settings.EMBEDDING_MODEL,
        dimensions=settings.EMBEDDING_DIMENSIONS,
        max_chars=settings.EMBEDDING_MAX_CHARS
    )


def build_services(settings: Optional[type] = None, dispatcher=None) -> Services:
    """Construct production service handles from configuration."""
    settings = settings or get_config()

    errors = settings.validate()
    if errors:
        logger.warning(f"Configuration problems: {errors}")

    if dispatcher is None:
        from pulseboard.tasks.dispatcher import CeleryDispatcher
        dispatcher = CeleryDispatcher()

    chat_client = OpenAIChatClient(
        api_key=settings.OPENAI_API_KEY,
        model=settings.EXTRACTION_MODEL,
        max_tokens=settings.EXTRACTION_MAX_TOKENS,
        timeout=settings.REQUEST_TIMEOUT
    )

    return Services(
        settings=settings,
        session_factory=make_session_factory(make_engine(settings.DATABASE_URL)),
        extractor=FeedbackExtractor(chat_client, model=settings.EXTRACTION_MODEL),
        embedder=build_embedder(settings),
        dispatcher=dispatcher,
        rate_limiter=RateLimiter.from_url(settings.REDIS_URL, settings.RATE_LIMITS),
        http=requests.Session()
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Return the process-wide services, building them on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]):
    global _services
    _services = services
