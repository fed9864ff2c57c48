from flask import Flask
from config import Config
from routes import health_bp, verify_pin_bp

from models import db
from flask_migrate import Migrate
from security.identity import build_identity_provider


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(verify_pin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Session issuer for the shared backing account
    app.extensions["identity_provider"] = build_identity_provider(app.config)

    if not app.config.get("APP_PIN"):
        app.logger.warning("APP_PIN is not set: every PIN check will be refused")

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        # JSON API only
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from datetime import datetime, timedelta
from security.attempts import count_recent_failures, prune_attempts, retention_cutoff
from security.lockout import state_to_dict
from security.lockout_store import get_blocked_count, load_state, reset_blocked_count

def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables (when not using `flask db upgrade`)."""
        db.create_all()
        click.echo("Tables created")

    @app.cli.command("prune-attempts")
    @click.option("--days", type=int, default=None, help="Retention horizon in days.")
    def prune(days):
        """Delete PIN attempts older than the retention horizon."""
        deleted = prune_attempts(retention_cutoff(days=days))
        click.echo(f"Deleted {deleted} attempt(s)")

    @app.cli.command("lockout-status")
    @click.argument("ip")
    def lockout_status(ip):
        """Show the lockout state stored for an IP."""
        state, exists = load_state(ip)
        if not exists:
            click.echo(f"No lockout state for {ip}")
            return

        now = datetime.utcnow()
        for key, value in state_to_dict(state).items():
            click.echo(f"{key}: {value}")
        click.echo(f"locked: {state.is_locked(now)}")
        window = timedelta(minutes=app.config.get("INITIAL_LOCK_MINUTES", 15))
        click.echo(f"failures_last_{int(window.total_seconds() // 60)}_min: {count_recent_failures(ip, now - window)}")

    @app.cli.command("blocked-count")
    @click.option("--reset", is_flag=True, help="Reset the counter to 0.")
    def blocked_count(reset):
        """Show (or reset) how many lockouts have been triggered."""
        if reset:
            reset_blocked_count()
            click.echo("Blocked count reset")
            return
        click.echo(str(get_blocked_count()))

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
