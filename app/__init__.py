import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter


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
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Collaborators (one per process, passed explicitly to the pipelines) ---
    from app.services.notification_service import EmailNotifier, format_money
    from app.services.stripe_service import StripeGateway

    app.extensions["stripe_gateway"] = StripeGateway(
        api_key=app.config.get("STRIPE_SECRET_KEY"),
        webhook_secret=app.config.get("STRIPE_WEBHOOK_SECRET"),
    )
    app.extensions["notifier"] = EmailNotifier()

    # --- Register blueprints ---
    from app.blueprints.webhooks import webhooks_bp
    from app.blueprints.account import account_bp
    from app.blueprints.admin import admin_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(admin_bp)

    # Exempt webhooks from CSRF (raw body needed for Stripe signature verification)
    csrf.exempt(webhooks_bp)

    # --- Health check ---
    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- Custom Jinja filters ---
    @app.template_filter("money")
    def money_filter(amount, currency="USD"):
        """Minor currency units -> display string, e.g. 3900, "AUD" -> "AUD 39.00"."""
        return format_money(amount, currency)

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@riqle.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create admin user + a demo product.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from app.models.user import User
        from app.models.product import Product

        # --- 1. Admin user ---
        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
            admin = existing
        else:
            admin = User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name="Admin",
                is_admin=True,
            )
            db.session.add(admin)
            db.session.flush()
            click.echo(f"Created admin user: {email}")

        # --- 2. Demo product ---
        product = Product.query.filter_by(slug="demo-essay").first()
        if product is None:
            product = Product(
                slug="demo-essay",
                title="Demo Essay",
                price_in_cents=3900,
                currency=app.config["DEFAULT_CURRENCY"],
            )
            db.session.add(product)
            db.session.flush()

        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Admin:     {email} / {password} (id: {admin.id})")
        click.echo(f"  Product:   {product.title} (id: {product.id})")
        click.echo("=" * 60)

    @app.cli.command("failed-events")
    @click.option("--limit", default=None, type=int, help="Max events to list.")
    def failed_events(limit):
        """List webhook events that failed and were never processed.

        Usage:
            flask failed-events
            flask failed-events --limit 10
        """
        from app.services.event_ledger import list_failed_events

        events = list_failed_events(limit=limit or app.config["FAILED_EVENTS_LIMIT"])
        if not events:
            click.echo("No failed events.")
            return

        for event in events:
            click.echo(
                f"{event.provider_event_id}  {event.event_type}  "
                f"attempts={event.attempt_count}  error={event.processing_error}"
            )

    @app.cli.command("retry-event")
    @click.argument("event_id")
    def retry_event(event_id):
        """Reprocess a stored, unprocessed webhook event.

        Usage:
            flask retry-event evt_1Abc...
        """
        from app.exceptions import EventAlreadyProcessedError, EventNotFoundError
        from app.services.stripe_service import retry_failed_event

        try:
            success, message = retry_failed_event(
                event_id, notifier=app.extensions["notifier"]
            )
        except (EventNotFoundError, EventAlreadyProcessedError) as e:
            raise click.ClickException(str(e))

        click.echo(f"{event_id}: {message}")
        if not success:
            raise click.ClickException(f"Retry failed: {message}")

    @app.cli.command("replay-session")
    @click.argument("session_id")
    def replay_session(session_id):
        """Fetch a checkout session from Stripe and fulfill it.

        Safe to run more than once: an existing order for the session is
        returned untouched.

        Usage:
            flask replay-session cs_live_...
        """
        from app.services.stripe_service import replay_checkout_session

        order = replay_checkout_session(
            app.extensions["stripe_gateway"],
            session_id,
            notifier=app.extensions["notifier"],
        )
        if order is None:
            raise click.ClickException(f"Session {session_id} was not fulfilled")
        click.echo(f"Session {session_id} -> order {order.id} ({order.status})")
