# ==========================================================================================================
# -------------- Configuration file for the KeyPanel Flask application -------------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default="False"):
    return os.getenv(name, default).lower() in ("true", "1", "t")


class Config:

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = _env_bool("DEBUG")
    TESTING = False

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        if FLASK_ENV == "production":
            raise ValueError("SECRET_KEY must be set in production")
        SECRET_KEY = "dev_key_change_me"

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'keypanel.db')}"

    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    if not _database_url.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 300,
        })

    # ------------------------------------------------------------------------------------------
    # Sessions and login throttling
    # ------------------------------------------------------------------------------------------
    SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "30"))
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
    LOGIN_ATTEMPT_WINDOW_MINUTES = int(os.getenv("LOGIN_ATTEMPT_WINDOW_MINUTES", "15"))
    BLOCK_DURATION_MINUTES = int(os.getenv("BLOCK_DURATION_MINUTES", str(48 * 60)))

    # ------------------------------------------------------------------------------------------
    # Bootstrap accounts
    # ------------------------------------------------------------------------------------------
    SUPER_OWNER_USERNAME = os.getenv("SUPER_OWNER_USERNAME", "superowner")
    SUPER_OWNER_PASSWORD = os.getenv("SUPER_OWNER_PASSWORD", "superowner")
    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

    # ------------------------------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------------------------------
    DEFAULT_PRICE_PER_DAY = int(os.getenv("DEFAULT_PRICE_PER_DAY", "10"))

    # ------------------------------------------------------------------------------------------
    # Connect API (license validation)
    # ------------------------------------------------------------------------------------------
    CONNECT_API_KEY = os.getenv("CONNECT_API_KEY", "your-secret-api-key-123")
    CONNECT_SECRET_KEY = os.getenv("CONNECT_SECRET_KEY", "your-secret-key")
    CONNECT_MODNAME = os.getenv("CONNECT_MODNAME", "")
    CONNECT_BASE_URL = os.getenv("CONNECT_BASE_URL", "http://localhost:5000")

    # ------------------------------------------------------------------------------------------
    # Mail (forgot-password OTP)
    # ------------------------------------------------------------------------------------------
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "True")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME") or os.getenv("GMAIL_USER")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD") or os.getenv("GMAIL_APP_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER") or MAIL_USERNAME
    OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))

    # Emit success/message alongside status/reason
    LEGACY_ENVELOPE_FIELDS = _env_bool("LEGACY_ENVELOPE_FIELDS", "True")

    LOG_DIR = os.getenv("LOG_DIR", "logs")


class TestConfig(Config):
    FLASK_ENV = "testing"
    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "panel@example.com"
    CONNECT_API_KEY = "test-api-key"
    CONNECT_SECRET_KEY = "test-secret-key"
