from .app import create_app
from .routes import integrations_bp, clusters_bp, feedback_bp, messages_bp

__all__ = ['create_app', 'integrations_bp', 'clusters_bp', 'feedback_bp', 'messages_bp']
