#=====================================
#            >>>> CONFIG <<<<
#=====================================
# config.py
import os
import logging
from datetime import timedelta
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def choose_db_uri():
    """Return the first reachable database URL, falling back to a local SQLite file."""
    for key in ("DATABASE_URL", "DATABASE_URL_2"):
        uri = os.getenv(key)
        if not uri:
            continue
        try:
            engine = create_engine(uri)
            engine.connect().close()
            engine.dispose()
            logger.info(f"Connected to database ({key})")
            return uri
        except OperationalError:
            logger.warning(f"Failed to connect to database ({key}). Trying next option...")

    logger.warning("No remote database reachable. Falling back to SQLite.")
    return "sqlite:///iptvhub.db"


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name}={value!r} is not an integer, using {default}")
        return default


def init_app(app, overrides=None):
    overrides = overrides or {}

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "12345QWER")
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "4321REWQ")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(days=_int_env("JWT_EXPIRES_DAYS", 7))
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]

    # Database
    if "SQLALCHEMY_DATABASE_URI" not in overrides:
        app.config["SQLALCHEMY_DATABASE_URI"] = choose_db_uri()
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Stream tokens (must match on every process that issues or verifies)
    app.config["STREAM_TOKEN_SECRET"] = os.getenv("STREAM_TOKEN_SECRET") or app.config["SECRET_KEY"]
    app.config["STREAM_TOKEN_TTL"] = _int_env("STREAM_TOKEN_TTL", 3600)
    app.config["STREAMING_BASE_URL"] = os.getenv("STREAMING_BASE_URL", "http://localhost:5000").rstrip("/")
    app.config["EDGE_API_KEY"] = os.getenv("EDGE_API_KEY") or None

    # Payments
    app.config["PAYMENT_WEBHOOK_SECRET"] = os.getenv("PAYMENT_WEBHOOK_SECRET") or None

    # CORS / rate limiting
    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    app.config["CORS_ORIGINS"] = [o.strip() for o in origins.split(",") if o.strip()]
    app.config["RATELIMIT_STORAGE_URI"] = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    app.config["RATELIMIT_ENABLED"] = os.getenv("RATELIMIT_ENABLED", "True") == "True"

    # Background expiry sweep, seconds between runs (0 disables)
    app.config["SUBSCRIPTION_SWEEP_INTERVAL"] = _int_env("SUBSCRIPTION_SWEEP_INTERVAL", 3600)

    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
    app.config["API_VERSION"] = "1.0.0"

    app.config.update(overrides)
