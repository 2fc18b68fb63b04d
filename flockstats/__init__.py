"""Flask application factory"""
import os
import sys

from flask import Flask, jsonify
from loguru import logger


def create_app(config_name='development'):
    """Application factory for creating Flask app instances"""
    app = Flask(__name__)

    # Load configuration
    from .config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app.config['DEBUG'], app.config['LOG_DIR'])

    # Initialize extensions
    from .extensions import db, cache
    db.init_app(app)
    cache.init_app(app)

    # Import models so every table is registered on db.metadata
    from . import models  # noqa: F401

    # Register blueprints
    from .routes import battles, stats, reports, roster, schedule
    app.register_blueprint(battles.bp, url_prefix='/clans')
    app.register_blueprint(stats.bp, url_prefix='/clans')
    app.register_blueprint(reports.bp, url_prefix='/clans')
    app.register_blueprint(roster.bp, url_prefix='/clans')
    app.register_blueprint(schedule.bp)

    # Map engine errors to JSON responses
    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    logger.info(f"Flask app created with config: {config_name}")

    return app


def register_error_handlers(app):
    """Translate engine error kinds into HTTP status codes"""
    from .exceptions import ConsistencyError, EngineError

    @app.errorhandler(EngineError)
    def handle_engine_error(error):
        if isinstance(error, ConsistencyError):
            logger.error(f"Consistency error: {error.message} {error.details}")
        else:
            logger.info(f"{error.label}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'Not Found', 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'Method Not Allowed', 'message': str(error.description)}), 405


def configure_logging(debug=False, log_dir='logs'):
    """Configure loguru for the web application"""
    # Remove default handler
    logger.remove()

    # Console handler (always)
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    )

    # File handler (production)
    if not debug and log_dir:
        logger.add(
            os.path.join(log_dir, "flockstats_{time:YYYY-MM-DD}.log"),
            rotation="00:00",  # New file at midnight
            retention="30 days",
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}"
        )

    logger.info("Logging configured")
