"""
Registration Service — Flask application
Handles event registration, payment webhooks and staff check-in.
"""

import os
from datetime import datetime, timezone

import click
from dotenv import load_dotenv
from flasgger import Swagger
from flask import Flask, jsonify
from sqlalchemy import text
import structlog

from registration_service.container import EXTENSION_KEY, build_services
from registration_service.errors import RegistrationError
from registration_service.extensions import db, jwt
from registration_service.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def _database_url():
    if os.getenv("DATABASE_URL"):
        return os.getenv("DATABASE_URL")
    return (
        f"postgresql://{os.getenv('DB_USER', 'registration_svc_user')}"
        f":{os.getenv('DB_PASS', 'password')}"
        f"@{os.getenv('DB_HOST', 'registrations-db')}"
        f":{os.getenv('DB_PORT', '5432')}"
        f"/{os.getenv('DB_NAME', 'registrations_db')}"
    )


def create_app(test_config=None, gateway=None, storage=None, notifier=None):
    load_dotenv()
    app = Flask(__name__)

    app_url = os.getenv("APP_URL", "http://localhost:5000")
    app.config.from_mapping(
        SQLALCHEMY_DATABASE_URI=_database_url(),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        JWT_SECRET_KEY=os.getenv("JWT_SECRET", "dev-secret-change-me"),
        REPOSITORY_BACKEND=os.getenv("REPOSITORY_BACKEND", "sql"),
        APP_URL=app_url,
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        COLLABORATOR_TIMEOUT=float(os.getenv("COLLABORATOR_TIMEOUT", "10")),
        # Payments
        PAYMENT_PROVIDER=os.getenv("PAYMENT_PROVIDER", "stripe"),
        STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY", ""),
        STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET", "whsec_test_secret"),
        STRIPE_CURRENCY=os.getenv("STRIPE_CURRENCY", "kes"),
        MPESA_CONSUMER_KEY=os.getenv("MPESA_CONSUMER_KEY", ""),
        MPESA_CONSUMER_SECRET=os.getenv("MPESA_CONSUMER_SECRET", ""),
        MPESA_SHORTCODE=os.getenv("MPESA_SHORTCODE", ""),
        MPESA_PASSKEY=os.getenv("MPESA_PASSKEY", ""),
        MPESA_BASE_URL=os.getenv("MPESA_BASE_URL", "https://sandbox.safaricom.co.ke"),
        MPESA_CALLBACK_URL=os.getenv("MPESA_CALLBACK_URL", f"{app_url}/api/webhooks/mpesa"),
        # Credential images
        CREDENTIAL_STORAGE=os.getenv("CREDENTIAL_STORAGE", "filesystem"),
        CREDENTIAL_STORAGE_DIR=os.getenv(
            "CREDENTIAL_STORAGE_DIR", os.path.join(app.instance_path, "credentials")
        ),
        STORAGE_URL=os.getenv("STORAGE_URL", ""),
        STORAGE_BUCKET=os.getenv("STORAGE_BUCKET", "images"),
        STORAGE_API_KEY=os.getenv("STORAGE_API_KEY", ""),
        # Email
        RESEND_API_KEY=os.getenv("RESEND_API_KEY", ""),
        EMAIL_FROM=os.getenv("EMAIL_FROM", "Events <events@example.com>"),
    )
    if test_config:
        app.config.update(test_config)

    setup_logging(app.config["LOG_LEVEL"])

    # Initialize Extensions
    db.init_app(app)
    jwt.init_app(app)
    Swagger(app)

    # Register Blueprints
    from registration_service.routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from registration_service.routes.registration import registration_bp
    app.register_blueprint(registration_bp)

    from registration_service.routes.checkin import checkin_bp
    app.register_blueprint(checkin_bp)

    from registration_service.routes.admin import admin_bp
    app.register_blueprint(admin_bp, url_prefix='/admin')

    from registration_service.routes.webhooks import webhooks_bp
    app.register_blueprint(webhooks_bp, url_prefix='/api/webhooks')

    app.extensions[EXTENSION_KEY] = build_services(
        app.config, gateway=gateway, storage=storage, notifier=notifier
    )

    @app.errorhandler(RegistrationError)
    def handle_registration_error(e):
        return jsonify(e.to_dict()), e.status_code

    # --- Health check ---------------------------------------------------
    @app.route('/health')
    def health():
        try:
            db.session.execute(text('SELECT 1'))
            return jsonify({
                "status": "healthy",
                "service": "registration-service",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }), 200
        except Exception as e:
            return jsonify({"status": "unhealthy", "service": "registration-service", "error": str(e)}), 503

    register_commands(app)
    return app


def register_commands(app):

    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo("Database initialised.")

    @app.cli.command("create-staff")
    @click.option("--email", required=True)
    @click.option("--password", required=True, prompt=True, hide_input=True)
    @click.option("--name", "display_name", default=None)
    def create_staff(email, password, display_name):
        """Create a staff account for the check-in desk."""
        from registration_service.models.staff import StaffUser

        staff = StaffUser(email=email.strip().lower(), display_name=display_name)
        staff.set_password(password)
        db.session.add(staff)
        db.session.commit()
        logger.info("staff_created", staff_id=str(staff.staff_id))
        click.echo(f"Staff user {staff.email} created.")


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5000)
