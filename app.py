import os
from flask import Flask, request
from werkzeug.exceptions import HTTPException
from config import Config
from extensions import db, login_manager, init_extensions
from logger import configure_app_logging
from licensing.exceptions import PanelError
from licensing.sessions import COOKIE_NAME, SessionStore
from utils import api_error, api_response, isoformat, utcnow


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------------------------------
    configure_app_logging(app)

    # ----------------------------------------------------------------------------------------------------------------------------------
    # SQLite needs its instance directory
    # --------------------------------------------------------------------------------------------------------------------------------------------
    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if database_uri.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(database_uri[len("sqlite:///"):]) or ".", exist_ok=True)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    init_extensions(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login: the admin-token cookie carries the session
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.request_loader
    def load_session(req):
        return SessionStore.resolve(req.cookies.get(COOKIE_NAME))

    @login_manager.unauthorized_handler
    def unauthorized():
        return api_error("Unauthorized", 401)

    register_blueprints(app)
    register_error_handlers(app)

    # ----------------------
    # Basic routes
    # ----------------------
    @app.route("/healthz")
    def healthz():
        return api_response({"status": "ok", "timestamp": isoformat(utcnow())})

    return app


def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.password_reset import password_bp
    from blueprints.account import bp as account_bp
    from blueprints.balance import bp as balance_bp
    from blueprints.referrals import bp as referrals_bp
    from blueprints.keys import bp as keys_bp
    from blueprints.users import bp as users_bp
    from blueprints.activity import activity_bp
    from blueprints.settings import bp as settings_bp
    from blueprints.blocked_ips import bp as blocked_ips_bp
    from blueprints.connect import bp as connect_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(password_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(balance_bp)
    app.register_blueprint(referrals_bp)
    app.register_blueprint(keys_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(blocked_ips_bp)
    app.register_blueprint(connect_bp)


def register_error_handlers(app):

    @app.errorhandler(PanelError)
    def handle_panel_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error(f"{request.method} {request.path}: {error.reason}")
        return api_error(error.reason, error.status_code, **error.extra)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return api_error(error.description or error.name, error.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        app.logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
        return api_error("Internal server error", 500)


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", False)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
