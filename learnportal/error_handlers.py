"""JSON error handlers registered for the whole application."""

from flask import Blueprint, current_app, jsonify
from flask_wtf.csrf import CSRFError

from .errors import AppError, SystemicError
from .utils import SYSTEMIC_EMAIL_ERRORS, EmailError

error_handlers_bp = Blueprint("error_handlers", __name__)


def _error_response(message, status_code):
    return jsonify({"success": False, "error": message}), status_code


@error_handlers_bp.app_errorhandler(SystemicError)
def handle_systemic_error(error):
    """Handles failures that affect a whole operation."""
    current_app.logger.error(f"Systemic Error: {error.message}")
    return _error_response(error.message, error.status_code)


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Handles validation, authorization and lookup errors."""
    current_app.logger.warning(f"Application Error: {error.message}")
    return _error_response(error.message, error.status_code)


@error_handlers_bp.app_errorhandler(EmailError)
def handle_email_error(error):
    """Handles mail transport errors that escaped a service."""
    current_app.logger.error(f"Email Error: {error}")
    status_code = 503 if isinstance(error, SYSTEMIC_EMAIL_ERRORS) else 502
    return _error_response(str(error), status_code)


@error_handlers_bp.app_errorhandler(CSRFError)
def handle_csrf_error(e):
    """Handles CSRF errors, which usually indicate an expired session."""
    current_app.logger.warning(f"CSRF Error: {e.description}")
    return _error_response(e.description, 400)


@error_handlers_bp.app_errorhandler(404)
def handle_404(e):
    """Handles generic 404 errors for routes that don't exist."""
    return _error_response("Not found.", 404)


@error_handlers_bp.app_errorhandler(405)
def handle_405(e):
    """Handles requests with an unsupported method."""
    return _error_response("Method not allowed.", 405)


@error_handlers_bp.app_errorhandler(500)
def handle_500(e):
    """Handles unexpected server errors."""
    current_app.logger.error(f"Internal Server Error: {e}")
    return _error_response("An unexpected error occurred.", 500)
