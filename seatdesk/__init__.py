import os
import logging

import click
from flask import Flask, g, jsonify

from seatdesk.config import config_by_name
from seatdesk.errors import SeatdeskError
from seatdesk.extensions import db, migrate, login_manager


def create_app(config_name=None, overrides=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if overrides:
        app.config.update(overrides)

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

    @app.before_request
    def resolve_identity_per_request():
        # The identity header is per request; an app context can outlive one.
        g.pop("_login_user", None)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from seatdesk import models  # noqa: F401

    # --- Settlement engine (gateway, fan-out, mirror built once) ---
    from seatdesk.services.settlement import build_engine
    app.extensions["seatdesk"] = build_engine(app.config)

    # --- Register blueprints ---
    from seatdesk.blueprints.payments import payments_bp
    from seatdesk.blueprints.seats import seats_bp
    from seatdesk.blueprints.admin import admin_bp
    from seatdesk.blueprints.webhooks import webhooks_bp

    app.register_blueprint(payments_bp)
    app.register_blueprint(seats_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        return jsonify(ok=True, service="seatdesk", facility=app.config["FACILITY_NAME"])

    # --- Error handlers ---
    @app.errorhandler(SeatdeskError)
    def seatdesk_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify(ok=False, error="Bad request", code="validation_error"), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify(ok=False, error="Member identity required", code="unauthorized"), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify(ok=False, error="Forbidden", code="forbidden"), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(ok=False, error="Not found", code="not_found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(ok=False, error="Method not allowed", code="method_not_allowed"), 405

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        return jsonify(ok=False, error="Internal server error", code="internal_error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-seats")
    def seed_seats():
        """Create any missing seats 1..SEAT_COUNT (idempotent).

        Usage:
            flask seed-seats
        """
        from seatdesk.services.settlement import get_engine

        created = get_engine().seats.initialize()
        click.echo(f"Seats created: {created} (universe: 1..{app.config['SEAT_COUNT']})")

    @app.cli.command("grant-admin")
    @click.argument("member_id")
    @click.option("--revoke", is_flag=True, help="Remove admin rights instead.")
    def grant_admin(member_id, revoke):
        """Give (or take away) admin rights for an identity-provider member id.

        Usage:
            flask grant-admin mem_123
            flask grant-admin mem_123 --revoke
        """
        from seatdesk.services.account_service import get_or_create_account

        account = get_or_create_account(member_id)
        account.is_admin = not revoke
        db.session.commit()
        click.echo(f"{member_id}: is_admin={account.is_admin}")

    @app.cli.command("run-sweep")
    @click.option(
        "--duty",
        "duties",
        multiple=True,
        type=click.Choice(["expire_seats", "mark_overdue", "prune_stale_attempts", "sync_mirror"]),
        help="Run only this duty (repeatable). Default: all.",
    )
    def run_sweep_command(duties):
        """Run the lifecycle duties once and print a report.

        Usage:
            flask run-sweep
            flask run-sweep --duty expire_seats --duty mark_overdue
        """
        from seatdesk.services.settlement import get_engine
        from seatdesk.services.sweeper import run_sweep

        reports = run_sweep(
            get_engine(),
            duties=list(duties) or None,
            stale_pending_days=app.config["STALE_PENDING_DAYS"],
        )
        for report in reports.values():
            click.echo(
                f"  {report.duty:<22} examined={report.examined} applied={report.applied} "
                f"skipped={report.skipped} failed={report.failed}"
            )

    @app.cli.command("sweeper")
    def sweeper_command():
        """Run the recurring lifecycle sweeper in the foreground (Ctrl-C stops it).

        Usage:
            flask sweeper
        """
        import time

        from seatdesk.services.sweeper import LifecycleSweeper

        sweeper = LifecycleSweeper(app)
        sweeper.start()
        click.echo(f"Sweeper running (tick {sweeper.tick_seconds}s). Ctrl-C to stop.")
        try:
            while sweeper.running:
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("Stopping sweeper...")
        finally:
            sweeper.stop()

    @app.cli.command("verify-stripe-key")
    def verify_stripe_key():
        """Check that STRIPE_SECRET_KEY is usable and report its mode.

        Run with prod env vars to confirm Live mode; test vars for Test mode.
        """
        import stripe as _stripe

        from seatdesk.services.settlement import get_engine

        gateway = get_engine().gateway
        if not gateway.secret_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        click.echo(f"Stripe key mode: {gateway.key_mode}")
        if not gateway.webhook_secret:
            click.echo("  WARNING: STRIPE_WEBHOOK_SECRET is not set.")
        if not app.config.get("PAYMENT_SIGNING_SECRET"):
            click.echo("  WARNING: PAYMENT_SIGNING_SECRET is not set.")

        try:
            account = gateway.check_credentials()
        except _stripe.StripeError as e:
            click.echo(f"  ERROR: {e}")
            return
        click.echo(f"  account={account.get('id')}, charges_enabled={account.get('charges_enabled')}")
