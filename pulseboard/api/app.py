from flask import Flask, jsonify
from flask_cors import CORS
import logging

from config.config import get_config
from pulseboard.errors import ConflictError, NotFoundError, ValidationError
from pulseboard.api.routes import clusters_bp, feedback_bp, integrations_bp, messages_bp

logger = logging.getLogger(__name__)


def create_app(config_name='development', services=None):
    """Application factory for Flask app.

    ``services`` overrides the process-wide service handles; tests pass
    fakes here.
    """
    app = Flask(__name__)
    settings = get_config(config_name)

    app.config['TESTING'] = settings.TESTING
    app.config['SECRET_KEY'] = settings.SECRET_KEY
    app.extensions['pulseboard'] = services

    # Configure logging
    logging.basicConfig(level=logging.INFO)

    # Enable CORS
    CORS(app)

    # Register blueprints
    app.register_blueprint(integrations_bp, url_prefix='/api/integrations')
    app.register_blueprint(clusters_bp, url_prefix='/api/clusters')
    app.register_blueprint(feedback_bp, url_prefix='/api/feedback')
    app.register_blueprint(messages_bp, url_prefix='/api/messages')

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'service': 'Pulseboard API'}

    # Error handlers
    @app.errorhandler(ValidationError)
    def validation_error(error):
        return jsonify({'error': str(error)}), 400

    @app.errorhandler(NotFoundError)
    def missing_resource(error):
        return jsonify({'error': str(error)}), 404

    @app.errorhandler(ConflictError)
    def conflict(error):
        return jsonify({'error': str(error)}), 409

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Not found'}, 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled error: {error}")
        return {'error': 'Internal server error'}, 500

    return app
