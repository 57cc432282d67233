#======================================
#            >>>> HELPER FUNCTIONS<<<<
#======================================
# helper.py
from functools import wraps

from flask import jsonify, request, g
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity

from .db import User, get_by_id
from .errors import AuthenticationError, Forbidden, ValidationError, NotFound

MAX_PAGE_SIZE = 100


def send_response(message="Success", data=None, status_code=200, pagination=None, errors=None):
    body = {"success": status_code < 400, "message": message}
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    if errors is not None:
        body["errors"] = errors
    return jsonify(body), status_code
#----------------------------------------------------------------------
def get_json_body(optional=False):
    data = request.get_json(silent=True)
    if data is None and optional:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
#----------------------------------------------------------------------
def require_fields(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", errors={f: "required" for f in missing})
#----------------------------------------------------------------------
def get_page_args(default_limit=20):
    page = request.args.get("page", 1, type=int) or 1
    limit = request.args.get("limit", default_limit, type=int) or default_limit
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)
#----------------------------------------------------------------------
def paginate(query, page, limit):
    result = query.paginate(page=page, per_page=limit, error_out=False)
    pagination = {
        "current_page": page,
        "total_pages": result.pages,
        "total_records": result.total,
        "per_page": limit,
    }
    return result.items, pagination
#----------------------------------------------------------------------
def get_or_404(model, object_id, message=None):
    obj = get_by_id(model, object_id)
    if obj is None:
        raise NotFound(message or f"{model.__name__} not found")
    return obj
#----------------------------------------------------------------------
def parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no"):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError("Expected a boolean value")
#----------------------------------------------------------------------
def client_meta():
    """Request details stored alongside a watch-history entry."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    return {
        "ip_address": forwarded.split(",")[0].strip() or request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }

#=====================================
#        >>>>ACCESS GRANTERS<<<<
#=====================================
def login_required(f):
    """Bearer JWT, then reload the account so suspended users are locked out at once."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        verify_jwt_in_request()
        identity = str(get_jwt_identity() or "")
        user = get_by_id(User, int(identity)) if identity.isdigit() else None
        if user is None:
            raise AuthenticationError("User not found")
        if user.status != "active":
            raise AuthenticationError("Account is not active")
        g.current_user = user
        return f(*args, **kwargs)
    return decorated_function
#-----------------------------------------------------------------------
ROLE_HIERARCHY = {
    "user": 0,
    "moderator": 1,
    "admin": 2,
}

def role_required(min_level):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = g.get("current_user")
            if user is None:
                raise AuthenticationError("Authentication required")
            user_level = ROLE_HIERARCHY.get(user.role, 0)
            if user.is_admin:
                user_level = ROLE_HIERARCHY["admin"]
            if user_level < min_level:
                raise Forbidden("Insufficient permissions")
            return f(*args, **kwargs)
        return decorated_function
    return decorator

def moderator_required(f):
    return role_required(1)(f)  # moderator and admin

def admin_required(f):
    return role_required(2)(f)  # admin only
