"""
Configuration settings for Pulseboard
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration class."""

    # Flask settings
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_HOST = os.getenv('FLASK_HOST', '0.0.0.0')
    FLASK_PORT = int(os.getenv('FLASK_PORT', 5000))
    FLASK_DEBUG = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    TESTING = False

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'postgresql://localhost/pulseboard')

    # Redis settings
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379')

    # Celery settings
    CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/1')
    CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/2')
    CELERY_TASK_ALWAYS_EAGER = False

    # Model provider settings
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
    EXTRACTION_MODEL = os.getenv('EXTRACTION_MODEL', 'gpt-4o-mini')
    EXTRACTION_MAX_TOKENS = int(os.getenv('EXTRACTION_MAX_TOKENS', '2048'))
    EMBEDDING_BACKEND = os.getenv('EMBEDDING_BACKEND', 'openai')  # openai, sentence-transformers
    EMBEDDING_MODEL = os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small')
    EMBEDDING_DIMENSIONS = int(os.getenv('EMBEDDING_DIMENSIONS', '1536'))
    EMBEDDING_MAX_CHARS = int(os.getenv('EMBEDDING_MAX_CHARS', '8000'))
    REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', '30'))

    # Integration settings
    SLACK_SIGNING_SECRET = os.getenv('SLACK_SIGNING_SECRET')
    INTERCOM_CLIENT_SECRET = os.getenv('INTERCOM_CLIENT_SECRET')
    APP_STORE_COUNTRY = os.getenv('APP_STORE_COUNTRY', 'us')
    APP_STORE_MAX_PAGES = int(os.getenv('APP_STORE_MAX_PAGES', '10'))
    SYNC_PENDING_BATCH = int(os.getenv('SYNC_PENDING_BATCH', '50'))

    # Clustering thresholds
    CLUSTER_SIMILARITY_THRESHOLD = float(os.getenv('CLUSTER_SIMILARITY_THRESHOLD', '0.85'))
    CLUSTER_MIN_CONFIDENCE = float(os.getenv('CLUSTER_MIN_CONFIDENCE', '0.7'))
    CLUSTER_CANDIDATES = int(os.getenv('CLUSTER_CANDIDATES', '5'))

    # Retry policy
    EXTRACTION_MAX_ATTEMPTS = int(os.getenv('EXTRACTION_MAX_ATTEMPTS', '3'))
    RETRY_BACKOFF_SECONDS = int(os.getenv('RETRY_BACKOFF_SECONDS', '30'))

    # Calls per minute, per external call class
    RATE_LIMITS = {
        'extraction': int(os.getenv('RATE_LIMIT_EXTRACTION', '10')),
        'embedding': int(os.getenv('RATE_LIMIT_EMBEDDING', '60')),
        'sync': int(os.getenv('RATE_LIMIT_SYNC', '5')),
    }

    @classmethod
    def validate(cls) -> list[str]:
        """Validate required configuration."""
        errors = []

        if not cls.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if not cls.REDIS_URL:
            errors.append("REDIS_URL is required")

        if not cls.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required")

        if cls.EMBEDDING_BACKEND not in ('openai', 'sentence-transformers'):
            errors.append(f"Unknown EMBEDDING_BACKEND: {cls.EMBEDDING_BACKEND}")

        return errors


class DevelopmentConfig(Config):
    """Development configuration."""
    FLASK_DEBUG = True
    CELERY_TASK_ALWAYS_EAGER = True


class ProductionConfig(Config):
    """Production configuration."""
    FLASK_DEBUG = False
    CELERY_TASK_ALWAYS_EAGER = False


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite:///:memory:')
    CELERY_TASK_ALWAYS_EAGER = True
    SLACK_SIGNING_SECRET = 'test-slack-secret'
    INTERCOM_CLIENT_SECRET = 'test-intercom-secret'
    EMBEDDING_DIMENSIONS = 3
    RETRY_BACKOFF_SECONDS = 1


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class."""
    if config_name is None:
        config_name = os.getenv('PULSEBOARD_ENV', 'default')

    return config.get(config_name, config['default'])
