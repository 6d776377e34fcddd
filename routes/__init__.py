"""
Flask route blueprints for StockOrderWeb.

- api: JSON endpoints (parsing, quotes, submission, job tracking, search)

Each blueprint is registered with the Flask app in create_app().
"""

from .api import api_bp, error_response, error_status

__all__ = [
    "api_bp",
    "error_response",
    "error_status",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(api_bp)
