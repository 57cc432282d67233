#=======================================
#              >>>>ADMIN ENDPOINT<<<<
#=======================================
# admin.py
# User management, mounted under /api/v1/user/admin
from flask import Blueprint, request, current_app, g
from sqlalchemy import or_

from .modules import db
from .db import User, Subscription
from .errors import ValidationError, Forbidden, NotFound
from .helper import (send_response, get_json_body, get_page_args, paginate, get_or_404,
                     login_required, admin_required, ROLE_HIERARCHY, parse_bool)

admin = Blueprint("admin", __name__)

USER_STATUSES = ("active", "suspended", "deleted")


@admin.route("/all", methods=["GET"])
@login_required
@admin_required
def list_users():
    page, limit = get_page_args()
    query = User.query

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        clauses = [User.name.ilike(like), User.email.ilike(like)]
        if search.isdigit():
            clauses.append(User.sid == int(search))
        query = query.filter(or_(*clauses))

    status = request.args.get("status")
    if status:
        query = query.filter(User.status == status)

    items, pagination = paginate(query.order_by(User.created_at.desc()), page, limit)
    return send_response("Users retrieved", [u.to_dict() for u in items], pagination=pagination)
#-------------------------------------------------------------------------
@admin.route("/<int:user_id>", methods=["GET"])
@login_required
@admin_required
def get_user(user_id):
    user = get_or_404(User, user_id, "User not found")
    data = user.to_dict()
    data["subscriptions"] = [s.to_dict() for s in user.subscriptions.order_by(Subscription.created_at.desc()).limit(10)]
    return send_response("User retrieved", data)
#-------------------------------------------------------------------------
@admin.route("/<int:user_id>", methods=["PUT"])
@login_required
@admin_required
def update_user(user_id):
    user = get_or_404(User, user_id, "User not found")
    data = get_json_body()

    if "name" in data:
        name = str(data["name"] or "").strip()
        if not 2 <= len(name) <= 100:
            raise ValidationError("Name must be between 2 and 100 characters")
        user.name = name
    if "phone" in data:
        user.phone = data["phone"] or None
    if "status" in data:
        if data["status"] not in USER_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(USER_STATUSES)}")
        if user.id == g.current_user.id and data["status"] != "active":
            raise Forbidden("You cannot deactivate your own account")
        user.status = data["status"]
    if "role" in data:
        if data["role"] not in ROLE_HIERARCHY:
            raise ValidationError(f"Role must be one of: {', '.join(ROLE_HIERARCHY)}")
        user.role = data["role"]
    if "is_admin" in data:
        user.is_admin = parse_bool(data["is_admin"])

    db.session.commit()
    current_app.logger.info(f"Admin {g.current_user.sid} updated user sid={user.sid}")
    return send_response("User updated", user.to_dict())
#-------------------------------------------------------------------------
@admin.route("/<int:user_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_user(user_id):
    user = get_or_404(User, user_id, "User not found")
    if user.id == g.current_user.id:
        raise Forbidden("You cannot delete your own account")

    db.session.delete(user)
    db.session.commit()
    current_app.logger.info(f"Admin {g.current_user.sid} deleted user sid={user.sid}")
    return send_response("User deleted")
#-------------------------------------------------------------------------
@admin.route("/user/<int:sid>", methods=["GET"])
@login_required
@admin_required
def get_user_by_sid(sid):
    user = User.query.filter_by(sid=sid).first()
    if user is None:
        raise NotFound("User not found")
    subscription = Subscription.get_active_by_user(user.id)
    return send_response("User found", {
        "user": user.to_dict(),
        "subscription": subscription.to_dict() if subscription else None,
    })
