"""
Routes module for the range receiver Flask blueprints.
"""

from range_receiver.routes.range import range_bp

__all__ = [
    "range_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(range_bp, url_prefix="/api")
