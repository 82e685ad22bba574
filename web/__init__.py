"""Flask application factory for the netssl renewal API."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()  # Load .env file if present (already gitignored)

from flask import Flask, jsonify, request

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def create_app(config: dict | None = None):
    """Create and configure the Flask application.

    ``config`` is applied before the scheduler decision, so passing
    ``{"TESTING": True}`` keeps background jobs from starting.
    """
    from config.settings import configure_logging

    configure_logging()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", "dev-netssl-key")
    if config:
        app.config.update(config)

    from web.routes.api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api/v1")

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return jsonify({"error": "Not found"}), 404
        return jsonify({"error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/health")
    def health_check():
        return jsonify({"status": "healthy", "version": "0.1.0"}), 200

    # Start scheduler (only in non-testing mode)
    if not app.config.get("TESTING"):
        from web.scheduler import init_scheduler
        init_scheduler(app)

    return app
