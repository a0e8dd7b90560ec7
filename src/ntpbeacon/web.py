"""HTTP boundary: one read-only route serving the latest NTP time."""

import logging

from flask import Flask, jsonify

from .query import TimeQuery

logger = logging.getLogger(__name__)


def create_app(query: TimeQuery) -> Flask:
    """Build the Flask app around a query interface."""
    app = Flask(__name__)

    @app.route('/', methods=['GET'])
    def current_time():
        return jsonify(query.current_time_text())

    return app


def serve(app: Flask, host: str = "127.0.0.1", port: int = 3030):
    """Run the app on Flask's threaded server (blocking)."""
    logger.info(f"Serving NTP time on http://{host}:{port}/")
    app.run(host=host, port=port, threaded=True, use_reloader=False)
