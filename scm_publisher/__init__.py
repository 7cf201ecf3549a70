"""SCM Publisher Flask Application Factory."""
import logging

from flask import Flask

from scm_publisher.config import FlaskConfig
from scm_publisher.extensions import db, migrate, init_celery


def create_app(config_class=FlaskConfig):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=logging.DEBUG if app.config.get("DEBUG") else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Configure ProxyFix for Nginx/Reverse Proxy
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(
        app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_celery(app)

    # Register tasks with the worker
    from scm_publisher.tasks import sync_tasks, maintenance_tasks

    # Register API blueprint
    from scm_publisher.api import api_bp
    app.register_blueprint(api_bp, url_prefix="/api/v1")

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    # Register commands
    from scm_publisher.commands import create_user_command, reconcile_webhooks_command
    app.cli.add_command(create_user_command)
    app.cli.add_command(reconcile_webhooks_command)

    return app
