"""
Shared fixtures: in-memory database, fake model clients and a recording dispatcher
"""

import os

os.environ.setdefault('PULSEBOARD_ENV', 'testing')

import pytest

from config.config import TestingConfig
from pulseboard.api.app import create_app
from pulseboard.models.cluster import FeedbackCluster
from pulseboard.models.database import Base, init_db, make_engine, make_session_factory
from pulseboard.models.feedback import ExtractedFeedback
from pulseboard.models.integration_source import IntegrationSource
from pulseboard.models.project import Project
from pulseboard.models.raw_message import RawMessage
from pulseboard.nlp.embedder import TextEmbedder, embedding_to_bytes
from pulseboard.nlp.extractor import FeedbackExtractor
from pulseboard.services.rate_limiter import RateLimiter
from pulseboard.wiring import Services
from fakes import FakeChatClient, FakeEmbeddingClient, FakeHttpSession, RecordingDispatcher


@pytest.fixture
def engine():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def chat_client():
    return FakeChatClient()


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def http():
    return FakeHttpSession()


@pytest.fixture
def services(session_factory, chat_client, embedding_client, dispatcher, http):
    return Services(
        settings=TestingConfig,
        session_factory=session_factory,
        extractor=FeedbackExtractor(chat_client, model='gpt-4o-mini'),
        embedder=TextEmbedder(embedding_client, model='text-embedding-3-small', dimensions=3),
        dispatcher=dispatcher,
        rate_limiter=RateLimiter({}),
        http=http
    )


@pytest.fixture
def make_project(db_session):
    def factory(slug):
        project = Project(name=slug.title(), slug=slug)
        db_session.add(project)
        db_session.commit()
        return project
    return factory


@pytest.fixture
def project(make_project):
    return make_project("acme")


@pytest.fixture
def make_source(db_session):
    def factory(project, type='slack', config=None, status='active', access_token='xoxb-test', name=None):
        source = IntegrationSource(
            project_id=project.id,
            type=type,
            name=name or f"{type} source",
            status=status,
            config=config if config is not None else {},
            access_token=access_token
        )
        db_session.add(source)
        db_session.commit()
        return source
    return factory


@pytest.fixture
def source(project, make_source):
    return make_source(project, config={'team_id': 'T1', 'channel_ids': ['C1']})


@pytest.fixture
def make_message(db_session):
    counter = {'n': 0}

    def factory(source, content="Would love a dark mode, the white screen is painful at night", status='pending', **fields):
        counter['n'] += 1
        message = RawMessage(
            integration_source_id=source.id,
            project_id=source.project_id,
            external_id=fields.pop('external_id', f"ext-{counter['n']}"),
            content=content,
            status=status,
            **fields
        )
        db_session.add(message)
        db_session.commit()
        return message
    return factory


@pytest.fixture
def make_feedback(db_session, make_message):
    def factory(source, embedding=(1.0, 0.0, 0.0), confidence=0.9, title="Add dark mode support",
                cluster_id=None, message=None, item_index=0):
        message = message or make_message(source, status='processed')
        feedback = ExtractedFeedback(
            raw_message_id=message.id,
            project_id=message.project_id,
            item_index=item_index,
            type='feature_request',
            title=title,
            description="User wants a dark theme",
            quote="dark mode please",
            confidence=confidence,
            sentiment='neutral',
            urgency='normal',
            embedding=embedding_to_bytes(embedding) if embedding is not None else None,
            cluster_id=cluster_id
        )
        db_session.add(feedback)
        db_session.commit()
        return feedback
    return factory


@pytest.fixture
def app(services):
    """Create a test Flask application."""
    return create_app('testing', services=services)


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def make_cluster(db_session):
    def factory(project, centroid=(1.0, 0.0, 0.0), member_count=1, title="Dark mode", review_status='pending'):
        cluster = FeedbackCluster(
            project_id=project.id,
            title=title,
            centroid_embedding=embedding_to_bytes(centroid),
            member_count=member_count,
            total_mentions=member_count,
            review_status=review_status
        )
        db_session.add(cluster)
        db_session.commit()
        return cluster
    return factory
