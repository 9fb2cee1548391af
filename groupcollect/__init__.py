import os
import logging

import click
from flask import Flask, jsonify

from groupcollect.config import config_by_name
from groupcollect.extensions import db, migrate, limiter
from groupcollect.services.errors import ServiceError


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from groupcollect import models  # noqa: F401

    # --- Register blueprints ---
    from groupcollect.blueprints.public import public_bp
    from groupcollect.blueprints.events import events_bp
    from groupcollect.blueprints.admin import admin_bp
    from groupcollect.blueprints.webhooks import webhooks_bp
    from groupcollect.blueprints.ops import ops_bp
    from groupcollect.blueprints.system import system_bp

    app.register_blueprint(public_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(ops_bp)
    app.register_blueprint(system_bp)

    # --- Error handlers ---
    @app.errorhandler(ServiceError)
    def service_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify(ok=False, error="Bad request", code="bad_request"), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(ok=False, error="Not found", code="not_found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(ok=False, error="Method not allowed", code="method_not_allowed"), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(
            ok=False,
            error="Too many requests. Please wait a moment and try again.",
            code="rate_limited",
        ), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(ok=False, error="Something went wrong", code="server_error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information; admin links carry the credential
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("cleanup-pledges")
    def cleanup_pledges_command():
        """Cancel PLEDGED payments older than 30 minutes.

        Usage (from an external scheduler, every few minutes):
            flask cleanup-pledges
        """
        from groupcollect.services.reaper_service import cleanup_pledges

        cancelled = cleanup_pledges()
        click.echo(f"Cancelled {cancelled} stale pledge(s).")

    @app.cli.command("seed-event")
    @click.option("--title", default="Five-a-side football", help="Event title")
    @click.option("--organiser", default="Demo Organiser", help="Organiser name")
    @click.option("--organiser-email", default=None, help="Organiser email")
    @click.option("--price", "price_pence", default=500, type=int, help="Price in pence (0 = free)")
    @click.option("--max-spots", default=10, type=int, help="Capacity (0 = unlimited)")
    def seed_event(title, organiser, organiser_email, price_pence, max_spots):
        """Create a demo event and print its public and admin links.

        Usage:
            flask seed-event
            flask seed-event --title "Quiz night" --price 0 --max-spots 0
        """
        from groupcollect.services.event_service import create_event

        result = create_event(
            title=title,
            organiser_name=organiser,
            organiser_email=organiser_email,
            price_pence=price_pence or None,
            max_spots=max_spots or None,
        )

        click.echo("")
        click.echo("=" * 60)
        click.echo("  SEED COMPLETE")
        click.echo("=" * 60)
        click.echo(f"  Event:      {title}")
        click.echo(f"  Public URL: {result['event_url']}")
        click.echo(f"  Admin URL:  {result['admin_url']}")
        click.echo("=" * 60)
        click.echo("")
