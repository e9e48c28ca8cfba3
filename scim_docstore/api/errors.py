"""Error handlers for the application (JSON only)."""
from flask import jsonify, request
from werkzeug.exceptions import HTTPException

SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(404)
    def not_found(error):
        if _is_scim_request():
            return _scim_body(404, "Resource not found"), 404
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        if _is_scim_request():
            return _scim_body(405, f"Method {request.method} not allowed"), 405
        return jsonify({"error": "Method Not Allowed", "message": str(error)}), 405

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        if _is_scim_request():
            return _scim_body(500, "An unexpected error occurred"), 500
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500


def _is_scim_request() -> bool:
    # SCIM endpoints always return SCIM error bodies (RFC 7644)
    return request.path.startswith("/scim/v2")


def _scim_body(status: int, detail: str):
    return jsonify({"schemas": [SCIM_ERROR_SCHEMA], "status": str(status), "detail": detail})
