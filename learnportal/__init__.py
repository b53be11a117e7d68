"""Initialize the Flask app and its extensions."""

import json
import os

import firebase_admin
from firebase_admin import credentials, firestore
from flask import Flask, current_app, g, session
from werkzeug.middleware.proxy_fix import ProxyFix

from .core.constants import (
    DEFAULT_MAIL_TIMEOUT,
    MAX_FILTER_VALUES,
    PASSWORD_MIN_LENGTH,
    USERS_COLLECTION,
)
from .extensions import csrf, mail


def _env_flag(name, default):
    return (os.environ.get(name) or default).lower() in ["true", "1", "t"]


def _init_firebase(app):
    """Initialize the Firebase Admin SDK from the first credentials found."""
    cred = None
    project_id = None

    # First, try to load from environment variable (for production)
    cred_json = os.environ.get("FIREBASE_CREDENTIALS_JSON")
    if cred_json:
        try:
            cred_info = json.loads(cred_json)
            project_id = cred_info.get("project_id")
            cred = credentials.Certificate(cred_info)
        except (json.JSONDecodeError, ValueError) as e:
            app.logger.error(f"Error parsing FIREBASE_CREDENTIALS_JSON: {e}")

    # Then a file next to the package (for local dev)
    if not cred:
        cred_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)), "firebase_credentials.json"
        )
        if os.path.exists(cred_path):
            try:
                with open(cred_path, "r") as f:
                    project_id = json.load(f).get("project_id")
                cred = credentials.Certificate(cred_path)
            except (json.JSONDecodeError, ValueError) as e:
                app.logger.error(f"Error loading credentials from file: {e}")

    if not cred:
        try:
            cred = credentials.ApplicationDefault()
            project_id = os.environ.get("FIREBASE_PROJECT_ID")
        except Exception as e:
            app.logger.error(
                f"Could not find any valid credentials (env, file, or default): {e}"
            )

    if cred and not firebase_admin._apps:
        options = {"projectId": project_id} if project_id else None
        try:
            firebase_admin.initialize_app(cred, options)
        except ValueError:
            app.logger.info("Firebase app already initialized.")


def create_app(test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY") or "dev",
        MAIL_SERVER=os.environ.get("MAIL_SERVER") or "smtp.gmail.com",
        MAIL_PORT=int(os.environ.get("MAIL_PORT") or 587),
        MAIL_USE_TLS=_env_flag("MAIL_USE_TLS", "true"),
        MAIL_USE_SSL=_env_flag("MAIL_USE_SSL", "false"),
        MAIL_USERNAME=os.environ.get("MAIL_USERNAME"),
        MAIL_PASSWORD=os.environ.get("MAIL_PASSWORD"),
        MAIL_DEFAULT_SENDER=os.environ.get("MAIL_DEFAULT_SENDER")
        or "noreply@learnportal.app",
        MAIL_TIMEOUT=float(os.environ.get("MAIL_TIMEOUT") or DEFAULT_MAIL_TIMEOUT),
        APP_NAME=os.environ.get("APP_NAME") or "LearnPortal",
        APP_URL=os.environ.get("APP_URL") or "http://localhost:5000",
        MAX_FILTER_VALUES=int(os.environ.get("MAX_FILTER_VALUES") or MAX_FILTER_VALUES),
        PASSWORD_MIN_LENGTH=int(
            os.environ.get("PASSWORD_MIN_LENGTH") or PASSWORD_MIN_LENGTH
        ),
        NOTIFICATION_MAX_WORKERS=int(os.environ.get("NOTIFICATION_MAX_WORKERS") or 4),
        PROVISIONING_MAX_WORKERS=int(os.environ.get("PROVISIONING_MAX_WORKERS") or 1),
    )

    if test_config:
        app.config.update(test_config)

    # Initialize Firebase Admin SDK only if not in testing mode
    if not app.config.get("TESTING"):
        _init_firebase(app)

    mail.init_app(app)
    csrf.init_app(app)

    from . import auth as auth_bp

    app.register_blueprint(auth_bp.bp)

    from . import admin as admin_bp

    app.register_blueprint(admin_bp.bp)

    from . import group as group_bp

    app.register_blueprint(group_bp.bp)

    from . import announcement as announcement_bp

    app.register_blueprint(announcement_bp.bp)

    from . import error_handlers

    app.register_blueprint(error_handlers.error_handlers_bp)

    @app.route("/health")
    def health_check():
        """Perform a simple health check."""
        return "OK", 200

    @app.before_request
    def load_logged_in_user():
        """If a user_id is in the session, load the user data from Firestore and store it in g."""
        user_id = session.get("user_id")
        g.user = None
        if user_id is None:
            return

        try:
            db = firestore.client()
            user_doc = db.collection(USERS_COLLECTION).document(user_id).get()
            if user_doc.exists:
                g.user = user_doc.to_dict()
                g.user["uid"] = user_id
            else:
                session.clear()
                current_app.logger.warning(
                    f"User {user_id} in session but not found in Firestore."
                )
        except Exception as e:
            current_app.logger.error(f"Error loading user from session: {e}")
            session.clear()

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app
