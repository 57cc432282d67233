#======================================
#        >>>> USER ACCOUNT ENDPOINTS<<<<
#======================================
# users.py
import re
from datetime import datetime, timezone

from flask import Blueprint, current_app, g
from flask_jwt_extended import create_access_token, get_jwt
from sqlalchemy import func

from .modules import db, limiter
from .db import User, Subscription, RevokedToken
from .entitlements import utc_now
from .errors import ValidationError, AuthenticationError, Conflict
from .helper import send_response, get_json_body, require_fields, login_required
from .watch_history import my_history, clear_history

users = Blueprint("users", __name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def issue_access_token(user):
    return create_access_token(identity=str(user.id))


def validate_password(password, field="password"):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                              errors={field: "too short"})
#----------------------------------------------------------------------
@users.route("/register", methods=["POST"])
@limiter.limit("30 per minute")
def register():
    data = get_json_body()
    require_fields(data, "name", "email", "password")

    name = str(data["name"]).strip()
    email = str(data["email"]).strip().lower()
    if not 2 <= len(name) <= 100:
        raise ValidationError("Name must be between 2 and 100 characters")
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address", errors={"email": "invalid"})
    validate_password(data["password"])

    if User.query.filter(func.lower(User.email) == email).first():
        raise Conflict("An account with this email already exists")

    user = User(name=name, email=email, phone=data.get("phone"), sid=User.next_sid())
    user.set_password(data["password"])
    db.session.add(user)
    try:
        db.session.flush()
        subscription = Subscription.create_free(user.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(f"New user registered: sid={user.sid}")
    return send_response("Registration successful", {
        "user": user.to_dict(),
        "sid": user.sid,
        "token": issue_access_token(user),
        "subscription": subscription.to_dict(),
    }, 201)
#----------------------------------------------------------------------
@users.route("/login", methods=["POST"])
@limiter.limit("30 per minute")
def login():
    data = get_json_body()
    identifier = str(data.get("identifier") or data.get("email") or data.get("sid") or "").strip()
    password = data.get("password")
    if not identifier or not password:
        raise ValidationError("SID or email and password are required")
    if not isinstance(password, str):
        raise ValidationError("password must be a string", errors={"password": "invalid"})

    user = User.find_by_identifier(identifier)
    if user is None or not user.check_password(password):
        current_app.logger.info(f"Failed login for identifier={identifier}")
        raise AuthenticationError("Invalid credentials")
    if user.status != "active":
        raise AuthenticationError("Account is not active")

    user.last_login = utc_now()
    db.session.commit()

    subscription = Subscription.get_active_by_user(user.id)
    return send_response("Login successful", {
        "user": user.to_dict(),
        "sid": user.sid,
        "token": issue_access_token(user),
        "subscription": subscription.to_dict() if subscription else None,
        "login_method": "sid" if identifier.isdigit() else "email",
    })
#----------------------------------------------------------------------
@users.route("/check-sid/<int:sid>", methods=["GET"])
def check_sid(sid):
    exists = User.query.filter_by(sid=sid).first() is not None
    return send_response("SID checked", {"sid": sid, "available": not exists})
#----------------------------------------------------------------------
@users.route("/profile", methods=["GET"])
@login_required
def get_profile():
    user = g.current_user
    subscription = Subscription.get_active_by_user(user.id)
    return send_response("Profile retrieved", {
        "user": user.to_dict(),
        "subscription": subscription.to_dict() if subscription else None,
    })
#----------------------------------------------------------------------
@users.route("/profile", methods=["PUT"])
@login_required
def update_profile():
    data = get_json_body()
    user = g.current_user

    if "name" in data:
        name = str(data["name"] or "").strip()
        if not 2 <= len(name) <= 100:
            raise ValidationError("Name must be between 2 and 100 characters")
        user.name = name
    if "phone" in data:
        user.phone = data["phone"] or None
    if "avatar" in data:
        user.avatar = data["avatar"] or None

    db.session.commit()
    return send_response("Profile updated", {"user": user.to_dict()})
#----------------------------------------------------------------------
@users.route("/change-password", methods=["PUT"])
@login_required
def change_password():
    data = get_json_body()
    require_fields(data, "current_password", "new_password")
    user = g.current_user

    if not isinstance(data["current_password"], str):
        raise ValidationError("current_password must be a string", errors={"current_password": "invalid"})
    if not user.check_password(data["current_password"]):
        raise AuthenticationError("Current password is incorrect")
    validate_password(data["new_password"], field="new_password")

    user.set_password(data["new_password"])
    db.session.commit()
    current_app.logger.info(f"Password changed for sid={user.sid}")
    return send_response("Password changed successfully")
#----------------------------------------------------------------------
@users.route("/logout", methods=["POST"])
@login_required
def logout():
    claims = get_jwt()
    expires_at = None
    if claims.get("exp"):
        expires_at = datetime.fromtimestamp(claims["exp"], timezone.utc).replace(tzinfo=None)
    if not RevokedToken.is_revoked(claims["jti"]):
        db.session.add(RevokedToken(jti=claims["jti"], user_id=g.current_user.id, expires_at=expires_at))
        db.session.commit()

    current_app.logger.info(f"User logged out: sid={g.current_user.sid}")
    return send_response("Logout successful")
#----------------------------------------------------------------------
# Account-scoped aliases of the watch-history endpoints
users.add_url_rule("/watch-history", "watch_history", my_history, methods=["GET"])
users.add_url_rule("/watch-history", "clear_watch_history", clear_history, methods=["DELETE"])
