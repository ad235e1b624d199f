"""
Error Handling Middleware
Consistent JSON error responses for the HTTP surface
"""
from flask import jsonify
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError, IntegrityError
from werkzeug.exceptions import HTTPException

from starfall.database import db
from starfall.infra.log import get_logger
from starfall.services.errors import OrderValidationError, StarfallError

logger = get_logger('starfall.errors')


def register_error_handlers(app):
    """Register JSON error handlers"""

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        """Handle database operational errors (connection, table not found, etc.)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        if 'does not exist' in error_msg or 'no such table' in error_msg:
            logger.error("Database table not found", error=error_msg)
            return jsonify({
                'error': 'not_ready',
                'message': 'Database tables not yet created'
            }), 503

        logger.error("Database operational error", error=error_msg)
        return jsonify({
            'error': 'database_error',
            'message': 'Database operation failed. Please try again later.'
        }), 503

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        """Handle database integrity errors (foreign key, unique constraint)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error("Database integrity error", error=error_msg)
        return jsonify({
            'error': 'conflict',
            'message': 'Data integrity constraint violated'
        }), 409

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({
            'error': 'validation_error',
            'details': e.errors(include_url=False, include_context=False),
        }), 400

    @app.errorhandler(OrderValidationError)
    def handle_order_validation_error(e):
        return create_validation_error_response(str(e))

    @app.errorhandler(StarfallError)
    def handle_starfall_error(e):
        logger.error("Unhandled coordinator error", error=str(e), error_type=type(e).__name__)
        return jsonify({
            'error': 'upstream_error',
            'message': 'A payment or delivery provider failed'
        }), 502

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({
            'error': (e.name or 'error').lower().replace(' ', '_'),
            'message': e.description
        }), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception("Unhandled exception")
        return jsonify({
            'error': 'internal_error',
            'message': 'Internal server error'
        }), 500


def create_validation_error_response(message: str, field: str = None):
    """Create a consistent validation error response"""
    response = {
        'error': 'validation_error',
        'message': message
    }
    if field:
        response['field'] = field

    return jsonify(response), 400
