#!/usr/bin/env python3
"""
Pulseboard - Main application entry point
Runs the Flask API; pipeline workers run under Celery:

    celery -A pulseboard.tasks.celery_app worker -l info
    celery -A pulseboard.tasks.celery_app beat -l info
"""

import argparse
import logging

from config.config import get_config
from pulseboard.api.app import create_app
from pulseboard.models.database import init_db, make_engine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run_flask_api(config_name: str):
    """Run the Flask API server."""
    settings = get_config(config_name)
    app = create_app(config_name)

    logger.info(f"Starting Flask API server on {settings.FLASK_HOST}:{settings.FLASK_PORT}")
    app.run(host=settings.FLASK_HOST, port=settings.FLASK_PORT, debug=settings.FLASK_DEBUG, use_reloader=False)


def main():
    """Main application entry point."""
    parser = argparse.ArgumentParser(description="Pulseboard feedback pipeline")
    parser.add_argument('--config', default=None, help="development, production or testing")
    parser.add_argument('--init-db', action='store_true', help="create database tables and exit")
    args = parser.parse_args()

    settings = get_config(args.config)
    errors = settings.validate()
    if errors:
        logger.error(f"Missing required configuration: {errors}")
        logger.error("Please set the required environment variables and try again.")
        return

    if args.init_db:
        init_db(make_engine(settings.DATABASE_URL))
        return

    logger.info("Starting Pulseboard application...")
    try:
        run_flask_api(args.config or 'default')
    except KeyboardInterrupt:
        logger.info("Shutting down Pulseboard...")


if __name__ == "__main__":
    main()
