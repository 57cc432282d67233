#======================================
#          >>>> CHANNEL ENDPOINTS<<<<
#======================================
# channels.py
import hmac

from flask import Blueprint, request, current_app, g
from sqlalchemy import func, or_

from .modules import db, limiter
from .db import (Category, Channel, Subscription, WatchHistory, slugify, get_by_id,
                 CHANNEL_QUALITIES, CHANNEL_LANGUAGES, CHANNEL_STATUSES)
from .errors import ValidationError, AuthenticationError, Forbidden, NotFound, Conflict, InvalidToken, UpstreamUnavailable
from .gate import Denied, DenyReason, allows
from .helper import (send_response, get_json_body, require_fields, get_page_args, paginate, get_or_404,
                     parse_bool, client_meta, login_required, admin_required, moderator_required)

channels = Blueprint("channels", __name__)

# Absent and premium-gated channels share one message
CHANNEL_DENIED_MESSAGE = "Channel is not accessible"


def get_access_gate():
    return current_app.extensions["access_gate"]


def denial_error(denied):
    if denied.reason == DenyReason.NOT_FOUND:
        return NotFound(CHANNEL_DENIED_MESSAGE)
    if denied.reason == DenyReason.INSUFFICIENT_TIER:
        return Forbidden(CHANNEL_DENIED_MESSAGE)
    if denied.reason == DenyReason.INVALID_TOKEN:
        return InvalidToken()
    return UpstreamUnavailable()


def current_entitlement(user):
    subscription = Subscription.get_active_by_user(user.id)
    return subscription.to_entitlement() if subscription else None


def has_premium_access(user):
    subscription = Subscription.get_active_by_user(user.id)
    return bool(subscription and subscription.has_premium_access())


def servable_channels():
    return Channel.query.filter(Channel.status == "active", Channel.is_online.is_(True))


def ordered(query):
    return query.order_by(Channel.sort_order.asc(), Channel.name.asc())
#----------------------------------------------------------------------
@channels.route("/", methods=["GET"])
def list_channels():
    page, limit = get_page_args()
    query = servable_channels()

    category = request.args.get("category")
    if category:
        query = query.join(Category).filter(Category.slug == category, Category.status == "active")
    quality = request.args.get("quality")
    if quality:
        query = query.filter(Channel.quality == quality)
    language = request.args.get("language")
    if language:
        query = query.filter(Channel.language == language)
    premium_only = request.args.get("premium_only")
    if premium_only:
        query = query.filter(Channel.is_premium.is_(parse_bool(premium_only)))

    items, pagination = paginate(ordered(query), page, limit)
    return send_response("Channels retrieved", [c.to_dict() for c in items], pagination=pagination)
#----------------------------------------------------------------------
@channels.route("/free", methods=["GET"])
def list_free_channels():
    page, limit = get_page_args()
    query = servable_channels().filter(Channel.is_premium.is_(False))
    items, pagination = paginate(ordered(query), page, limit)
    return send_response("Free channels retrieved", [c.to_dict() for c in items], pagination=pagination)
#----------------------------------------------------------------------
@channels.route("/search", methods=["GET"])
def search_channels():
    q = (request.args.get("q") or "").strip()
    if len(q) < 2:
        raise ValidationError("Search query must be at least 2 characters")

    page, limit = get_page_args()
    like = f"%{q}%"
    query = (servable_channels()
             .filter(or_(Channel.name.ilike(like), Channel.description.ilike(like)))
             .order_by(Channel.viewer_count.desc(), Channel.name.asc()))
    items, pagination = paginate(query, page, limit)
    return send_response("Search results", [c.to_dict() for c in items], pagination=pagination)
#----------------------------------------------------------------------
@channels.route("/category/<int:category_id>", methods=["GET"])
@login_required
def list_by_category(category_id):
    category = Category.query.filter_by(id=category_id, status="active").first()
    if category is None:
        raise NotFound("Category not found")

    page, limit = get_page_args()
    query = servable_channels().filter(Channel.category_id == category.id)

    # Premium channels are only listed for users who could play them
    if not has_premium_access(g.current_user):
        query = query.filter(Channel.is_premium.is_(False))

    items, pagination = paginate(ordered(query), page, limit)
    return send_response("Channels retrieved", {
        "category": category.to_dict(),
        "channels": [c.to_dict(include_category=False) for c in items],
    }, pagination=pagination)
#----------------------------------------------------------------------
@channels.route("/<int:channel_id>", methods=["GET"])
@login_required
def get_channel(channel_id):
    channel = get_by_id(Channel, channel_id)
    if channel is None or (channel.status != "active" and not g.current_user.has_admin_access):
        raise NotFound(CHANNEL_DENIED_MESSAGE)
    if not g.current_user.has_admin_access and not allows(channel, current_entitlement(g.current_user)):
        raise Forbidden(CHANNEL_DENIED_MESSAGE)
    return send_response("Channel retrieved", channel.to_dict())

#======================================
#           >>>>STREAM ACCESS<<<<
#======================================
@channels.route("/<int:channel_id>/stream", methods=["GET"])
@limiter.limit("60 per minute")
@login_required
def get_stream(channel_id):
    user = g.current_user
    meta = client_meta()
    meta["session_id"] = request.args.get("session_id") or None

    result = get_access_gate().request_stream(channel_id, user.id, watch_meta=meta)
    if isinstance(result, Denied):
        raise denial_error(result)

    current_app.logger.info(f"Stream token issued: channel={channel_id} user={user.sid}")
    return send_response("Stream access granted", {
        "proxyUrl": result.proxy_url,
        "token": result.token,
        "expiresAt": result.expires_at,
    })
#----------------------------------------------------------------------
def _check_edge_key():
    expected = current_app.config.get("EDGE_API_KEY")
    if not expected:
        if current_app.testing:
            return
        current_app.logger.warning("Token verification rejected: EDGE_API_KEY is not set")
        raise AuthenticationError("Edge credentials are not configured")
    presented = request.headers.get("X-Edge-Key", "")
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        raise AuthenticationError("Invalid edge credentials")


@channels.route("/<int:channel_id>/verify-token", methods=["GET"])
def verify_token(channel_id):
    """Called by the streaming edge before it relays the real media URL."""
    _check_edge_key()

    token = request.args.get("token", "")
    subject_id = request.args.get("subjectId", "")
    expires_at = request.args.get("expiresAt", "")
    if not token or not subject_id or not expires_at:
        raise ValidationError("token, subjectId and expiresAt are required")
    if not subject_id.isdigit():
        raise InvalidToken()

    result = get_access_gate().verify_stream(channel_id, int(subject_id), expires_at, token)
    if isinstance(result, Denied):
        raise denial_error(result)

    return send_response("Token verified", {
        "realUrl": result.real_url,
        "channelId": result.channel_id,
    })

#======================================
#               >>>>ADMIN<<<<
#======================================
def _choice(data, field, choices):
    value = data[field]
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def _apply_channel_fields(channel, data):
    if "name" in data:
        name = str(data["name"] or "").strip()
        if not 2 <= len(name) <= 100:
            raise ValidationError("Channel name must be between 2 and 100 characters")
        clash = Channel.query.filter(func.lower(Channel.name) == name.lower())
        if channel.id is not None:
            clash = clash.filter(Channel.id != channel.id)
        if clash.first():
            raise Conflict("A channel with this name already exists")
        slug = slugify(name)
        if not slug:
            raise ValidationError("Channel name must contain letters or digits")
        slug_clash = Channel.query.filter(Channel.slug == slug)
        if channel.id is not None:
            slug_clash = slug_clash.filter(Channel.id != channel.id)
        if slug_clash.first():
            raise Conflict("A channel with a similar name already exists")
        channel.name = name
        channel.slug = slug

    if "category_id" in data:
        try:
            category_id = int(data["category_id"])
        except (TypeError, ValueError):
            raise ValidationError("category_id must be an integer")
        if get_by_id(Category, category_id) is None:
            raise ValidationError("Category does not exist")
        channel.category_id = category_id
    if "stream_url" in data:
        url = str(data["stream_url"] or "").strip()
        if not url.startswith(("http://", "https://")):
            raise ValidationError("stream_url must be an http(s) URL")
        channel.stream_url = url

    for field in ("description", "thumbnail", "logo", "country"):
        if field in data:
            setattr(channel, field, data[field])
    if "quality" in data:
        channel.quality = _choice(data, "quality", CHANNEL_QUALITIES)
    if "language" in data:
        channel.language = _choice(data, "language", CHANNEL_LANGUAGES)
    if "status" in data:
        channel.status = _choice(data, "status", CHANNEL_STATUSES)
    if "is_premium" in data:
        channel.is_premium = parse_bool(data["is_premium"])
    if "is_online" in data:
        channel.is_online = parse_bool(data["is_online"])
    if "sort_order" in data:
        try:
            channel.sort_order = int(data["sort_order"])
        except (TypeError, ValueError):
            raise ValidationError("sort_order must be an integer")
#----------------------------------------------------------------------
@channels.route("/", methods=["POST"])
@login_required
@admin_required
def create_channel():
    data = get_json_body()
    require_fields(data, "name", "category_id", "stream_url")

    channel = Channel()
    _apply_channel_fields(channel, data)
    db.session.add(channel)
    db.session.commit()

    current_app.logger.info(f"Channel created: {channel.slug} (premium={channel.is_premium})")
    return send_response("Channel created", channel.to_dict(), 201)
#----------------------------------------------------------------------
@channels.route("/<int:channel_id>", methods=["PUT"])
@login_required
@admin_required
def update_channel(channel_id):
    channel = get_or_404(Channel, channel_id, "Channel not found")
    _apply_channel_fields(channel, get_json_body())
    db.session.commit()
    return send_response("Channel updated", channel.to_dict())
#----------------------------------------------------------------------
@channels.route("/<int:channel_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_channel(channel_id):
    channel = get_or_404(Channel, channel_id, "Channel not found")
    WatchHistory.query.filter_by(channel_id=channel.id).delete(synchronize_session=False)
    db.session.delete(channel)
    db.session.commit()
    current_app.logger.info(f"Channel deleted: {channel.slug}")
    return send_response("Channel deleted")
#----------------------------------------------------------------------
@channels.route("/<int:channel_id>/status", methods=["PUT"])
@login_required
@admin_required
def update_channel_status(channel_id):
    channel = get_or_404(Channel, channel_id, "Channel not found")
    data = get_json_body()
    require_fields(data, "status")
    channel.status = _choice(data, "status", CHANNEL_STATUSES)
    db.session.commit()
    return send_response("Channel status updated", channel.to_dict())
#----------------------------------------------------------------------
@channels.route("/<int:channel_id>/online-status", methods=["PUT"])
@login_required
@moderator_required
def update_online_status(channel_id):
    channel = get_or_404(Channel, channel_id, "Channel not found")
    data = get_json_body()
    if "is_online" not in data:
        raise ValidationError("is_online is required")
    channel.is_online = parse_bool(data["is_online"])
    db.session.commit()
    current_app.logger.info(f"Channel {channel.slug} is_online={channel.is_online}")
    return send_response("Channel online status updated", channel.to_dict())
