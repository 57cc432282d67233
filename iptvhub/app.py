#======================================
#              >>>> APP FACTORY <<<<
#======================================
# app.py
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from . import config
from .modules import db, jwt, limiter, cors
from .db import User, Subscription, RevokedToken
from .entitlements import utc_now
from .errors import AppError, UpstreamUnavailable
from .gate import AccessGate
from .helper import send_response
from .store import SqlAlchemyStore
from .stream_token import StreamTokenSigner

from .users import users
from .admin import admin
from .categories import categories
from .channels import channels
from .subscriptions import subscriptions, init_scheduler, expire_subscriptions
from .payment import payment
from .watch_history import watch_history

API_PREFIX = "/api/v1"

BLUEPRINTS = [
    (users, "/user"),
    (admin, "/user/admin"),
    (categories, "/category"),
    (channels, "/channel"),
    (subscriptions, "/subscription"),
    (payment, "/payment"),
    (watch_history, "/watch-history"),
]


def configure_logging(app):
    level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    app.logger.setLevel(level)

#=====================================
#          >>>>JWT RESPONSES<<<<
#=====================================
@jwt.unauthorized_loader
def missing_token(reason):
    return send_response("Access token required", status_code=401)


@jwt.invalid_token_loader
def invalid_token(reason):
    return send_response("Invalid access token", status_code=401)


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_payload):
    return send_response("Access token expired", status_code=401)


@jwt.token_in_blocklist_loader
def token_is_revoked(jwt_header, jwt_payload):
    return RevokedToken.is_revoked(jwt_payload["jti"])


@jwt.revoked_token_loader
def revoked_token(jwt_header, jwt_payload):
    return send_response("Access token has been revoked", status_code=401)

#=====================================
#         >>>>ERROR HANDLERS<<<<
#=====================================
def register_error_handlers(app):

    @app.errorhandler(AppError)
    def handle_app_error(e):
        if isinstance(e, UpstreamUnavailable):
            app.logger.error(f"Upstream unavailable: {e.__cause__ or e.message}")
        return send_response(e.message, status_code=e.status_code, errors=e.errors)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 429:
            return send_response("Too many requests, please try again later", status_code=429)
        return send_response(e.description or e.name, status_code=e.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        app.logger.error(f"Internal Server Error: {e}", exc_info=True)
        return send_response("Internal server error", status_code=500)

#=====================================
#            >>>>CLI<<<<
#=====================================
def register_commands(app):

    @app.cli.command("expire-subscriptions")
    def expire_subscriptions_command():
        """Flip lapsed paid subscriptions to expired."""
        count = expire_subscriptions(app)
        click.echo(f"Expired {count} subscription(s)")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("password")
    @click.option("--name", default="Administrator")
    def create_admin_command(email, password, name):
        """Create an admin account, or promote an existing one."""
        user = User.query.filter_by(email=email.lower()).first()
        if user is None:
            user = User(name=name, email=email.lower(), sid=User.next_sid())
            user.set_password(password)
            db.session.add(user)
            db.session.flush()
            Subscription.create_free(user.id)
        user.role = "admin"
        user.is_admin = True
        db.session.commit()
        click.echo(f"Admin ready: sid={user.sid} email={user.email}")

#=====================================
#            >>>>FACTORY<<<<
#=====================================
def create_app(overrides=None):
    app = Flask(__name__)
    config.init_app(app, overrides)
    configure_logging(app)
    app.url_map.strict_slashes = False

    db.init_app(app)
    jwt.init_app(app)
    limiter.init_app(app)
    cors.init_app(app, resources={
        r"/api/*": {"origins": app.config["CORS_ORIGINS"]}
    }, supports_credentials=True)

    for blueprint, prefix in BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=f"{API_PREFIX}{prefix}")

    signer = StreamTokenSigner(app.config["STREAM_TOKEN_SECRET"])
    app.extensions["access_gate"] = AccessGate(
        SqlAlchemyStore(),
        signer,
        ttl_seconds=app.config["STREAM_TOKEN_TTL"],
        streaming_base_url=app.config["STREAMING_BASE_URL"],
    )

    register_error_handlers(app)
    register_commands(app)

    @app.route("/")
    def index():
        return send_response("Welcome to the IPTV API", {"version": app.config["API_VERSION"], "docs": f"{API_PREFIX}/health"})

    @app.route(f"{API_PREFIX}/health")
    def health():
        return jsonify({
            "success": True,
            "message": "IPTV API is running",
            "timestamp": utc_now().isoformat(),
            "version": app.config["API_VERSION"],
        })

    with app.app_context():
        db.create_all()

    if not app.config.get("TESTING"):
        init_scheduler(app)

    app.logger.info(f"App ready. Stream tokens expire after {app.config['STREAM_TOKEN_TTL']}s")
    return app
