"""
Flask application factory for the HL7 Viewer query service.

Serves the parsing, addressing, filtering and statistics engine as a JSON API
mounted under BASE_PATH (``/HL7`` by default).
"""

import uuid
from typing import Optional
from flask import Flask, redirect, request, g
from werkzeug.exceptions import HTTPException

from hl7_viewer.config import Config, load_config
from hl7_viewer.core.logging import setup_logging, get_logger, log_security_event
from hl7_viewer.core.exceptions import HL7ViewerError
from hl7_viewer.hl7.routes import create_hl7_blueprint

logger = get_logger(__name__)


def create_app(config: Optional[Config] = None) -> Flask:
    """
    Create and configure the HL7 Viewer application.

    Args:
        config: Pre-built configuration; loaded from the environment when omitted

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config = config or load_config()
    app.config.from_mapping(vars(config))

    setup_logging(app)

    register_blueprints(app)

    setup_security_handlers(app, config)

    logger.info(
        "HL7 Viewer application created",
        extra={
            'environment': config.FLASK_ENV,
            'host': config.HOST,
            'port': config.PORT,
            'base_path': config.BASE_PATH
        }
    )

    return app


def register_blueprints(app: Flask) -> None:
    """Register the viewer blueprint and the root redirect."""
    base_path = app.config['BASE_PATH']

    app.register_blueprint(create_hl7_blueprint(), url_prefix=base_path)

    @app.route('/')
    def root_redirect():
        return redirect(base_path + '/')

    logger.info("All blueprints registered")


def setup_security_handlers(app: Flask, config: Config) -> None:
    """Setup request IDs, security headers, error handling, and audit logging."""

    @app.before_request
    def security_before_request():
        """Tag each request for audit correlation."""
        g.request_id = str(uuid.uuid4())

        log_security_event(
            'request_received',
            {
                'request_id': g.request_id,
                'method': request.method,
                'path': request.path,
                'remote_addr': request.remote_addr,
                'user_agent': request.headers.get('User-Agent', 'Unknown')
            },
            level='DEBUG'
        )

    @app.errorhandler(HL7ViewerError)
    def handle_viewer_error(error: HL7ViewerError):
        """Query errors that escaped a route are still client errors."""
        log_security_event(
            'application_error',
            {
                'error_type': error.__class__.__name__,
                'error_code': error.error_code,
                'request_path': request.path,
                'request_id': getattr(g, 'request_id', 'unknown')
            },
            level='WARNING'
        )
        return {
            'success': False,
            'error': {'kind': error.error_code, 'message': error.message, 'labels': list(error.labels)}
        }, 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Handle HTTP errors with audit logging."""
        if error.code >= 400:
            log_security_event(
                'http_error',
                {
                    'status_code': error.code,
                    'request_path': request.path,
                    'request_id': getattr(g, 'request_id', 'unknown')
                },
                level='WARNING' if error.code < 500 else 'ERROR'
            )

        if error.code < 400:
            return error

        return {'success': False, 'error': {'kind': 'HTTPError', 'message': error.description, 'labels': []}}, error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """Handle unexpected errors with security logging."""
        log_security_event(
            'unexpected_error',
            {
                'error_type': type(error).__name__,
                'request_path': request.path,
                'request_id': getattr(g, 'request_id', 'unknown')
            },
            level='ERROR'
        )

        logger.error(f"Unexpected error: {error}", exc_info=True)

        # Never expose internal errors outside development
        if config.is_development:
            raise error

        return {'success': False, 'error': {'kind': 'InternalError', 'message': 'Internal server error', 'labels': []}}, 500

    @app.after_request
    def security_after_request(response):
        """Add security headers."""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Cache-Control'] = 'no-store'
        response.headers['X-Request-ID'] = getattr(g, 'request_id', 'unknown')
        return response
