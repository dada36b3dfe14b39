import logging

from flask import Flask, jsonify
from config import Config
from routes import health_bp, booking_bp, schedules_bp, payments_bp, access_bp, webhook_bp

from models import db
from flask_migrate import Migrate
from scheduling.cache import availability_cache
from scheduling.errors import BookingError
from utils.auth_context import load_current_user


def create_app(config_object=Config, cache_client=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(schedules_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(access_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Shared availability cache (no-op without REDIS_URL)
    availability_cache.init_app(app, client=cache_client)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(err):
        return jsonify(err.to_dict()), err.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from scheduling import access, catalog, reservations


def register_cli(app):
    @app.cli.command("generate-slots")
    @click.argument("service_type")
    @click.argument("start_date")
    @click.argument("end_date")
    @click.option("--time", "times", multiple=True, help="HH:MM, repeatable. Defaults to the weekly schedule.")
    @click.option("--price", type=int, default=None)
    @click.option("--duration", type=int, default=None)
    @click.option("--include-weekends", is_flag=True, default=False)
    def generate_slots(service_type, start_date, end_date, times, price, duration, include_weekends):
        """Create bookable slots for SERVICE_TYPE between two dates (inclusive)."""
        try:
            result = catalog.generate(
                service_type,
                start_date,
                end_date,
                times=list(times) or None,
                price=price,
                duration=duration,
                skip_weekends=not include_weekends,
            )
        except BookingError as exc:
            raise click.ClickException(exc.message)
        click.echo(f"created={result.created} skipped={result.skipped} errors={result.errors}")

    @app.cli.command("purge-slots")
    @click.argument("service_type")
    @click.argument("start_date")
    @click.argument("end_date")
    def purge_slots(service_type, start_date, end_date):
        """Delete unreserved slots of SERVICE_TYPE between two dates."""
        try:
            deleted = catalog.purge_slots(service_type, start_date, end_date)
        except BookingError as exc:
            raise click.ClickException(exc.message)
        click.echo(f"deleted={deleted}")

    @app.cli.command("notification-feed")
    def notification_feed():
        """Print subscriptions expiring or lapsed around now."""
        for c in access.notification_candidates():
            click.echo(f"{c.kind}\t{c.user_id or '-'}\t{c.service}\t{c.expiry.isoformat()}")

    @app.cli.command("release-expired-holds")
    def release_expired_holds():
        """Cancel unpaid bookings past PENDING_HOLD_MINUTES and free their slots."""
        expired = reservations.release_expired_holds()
        click.echo(f"released={len(expired)}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
