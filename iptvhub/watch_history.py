#======================================
#       >>>> WATCH HISTORY ENDPOINTS<<<<
#======================================
# watch_history.py
from flask import Blueprint, request, current_app, g
from sqlalchemy import distinct, func

from .modules import db
from .db import Channel, WatchHistory, DEVICE_TYPES, get_by_id
from .errors import ValidationError, Forbidden, NotFound
from .gate import allows
from .helper import (send_response, get_json_body, require_fields, get_page_args, paginate, get_or_404,
                     client_meta, login_required, admin_required)
from .channels import current_entitlement

watch_history = Blueprint("watch_history", __name__)


def _own_entry(entry_id):
    entry = get_or_404(WatchHistory, entry_id, "Watch history entry not found")
    if entry.user_id != g.current_user.id:
        raise NotFound("Watch history entry not found")
    return entry


def _non_negative_int(value, field):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if number < 0:
        raise ValidationError(f"{field} cannot be negative")
    return number
#----------------------------------------------------------------------
@watch_history.route("/my-history", methods=["GET"])
@login_required
def my_history():
    page, limit = get_page_args()
    query = WatchHistory.query.filter_by(user_id=g.current_user.id)
    channel_id = request.args.get("channel_id", type=int)
    if channel_id:
        query = query.filter(WatchHistory.channel_id == channel_id)

    query = query.order_by(WatchHistory.watched_at.desc(), WatchHistory.id.desc())
    items, pagination = paginate(query, page, limit)
    return send_response("Watch history retrieved", [w.to_dict() for w in items], pagination=pagination)
#----------------------------------------------------------------------
@watch_history.route("/add", methods=["POST"])
@login_required
def add_entry():
    data = get_json_body()
    require_fields(data, "channel_id")

    channel = get_by_id(Channel, _non_negative_int(data["channel_id"], "channel_id"))
    if channel is None or channel.status != "active":
        raise NotFound("Channel not found")
    if not allows(channel, current_entitlement(g.current_user)):
        raise Forbidden("Premium subscription required for this channel")

    device_type = data.get("device_type")
    if device_type is not None and device_type not in DEVICE_TYPES:
        raise ValidationError(f"device_type must be one of: {', '.join(DEVICE_TYPES)}")

    meta = client_meta()
    entry = WatchHistory.record_session(
        g.current_user.id,
        channel.id,
        session_id=data.get("session_id"),
        duration=_non_negative_int(data.get("watch_duration", 0), "watch_duration"),
        device_type=device_type,
        country=data.get("country"),
        city=data.get("city"),
        **meta,
    )
    db.session.commit()
    return send_response("Watch history recorded", entry.to_dict(), 201)
#----------------------------------------------------------------------
@watch_history.route("/<int:entry_id>/duration", methods=["PUT"])
@login_required
def update_duration(entry_id):
    entry = _own_entry(entry_id)
    data = get_json_body()
    require_fields(data, "additional_seconds")

    entry.watch_duration += _non_negative_int(data["additional_seconds"], "additional_seconds")
    db.session.commit()
    return send_response("Watch duration updated", entry.to_dict())
#----------------------------------------------------------------------
@watch_history.route("/<int:entry_id>", methods=["DELETE"])
@login_required
def delete_entry(entry_id):
    entry = _own_entry(entry_id)
    db.session.delete(entry)
    db.session.commit()
    return send_response("Watch history entry deleted")
#----------------------------------------------------------------------
@watch_history.route("/clear", methods=["DELETE"])
@login_required
def clear_history():
    count = WatchHistory.query.filter_by(user_id=g.current_user.id).delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info(f"User {g.current_user.sid} cleared {count} watch history entries")
    return send_response("Watch history cleared", {"deleted": count})
#----------------------------------------------------------------------
@watch_history.route("/stats/my-stats", methods=["GET"])
@login_required
def my_stats():
    user_id = g.current_user.id
    total_time, sessions, channels, average = (db.session.query(
        func.coalesce(func.sum(WatchHistory.watch_duration), 0),
        func.count(WatchHistory.id),
        func.count(distinct(WatchHistory.channel_id)),
        func.coalesce(func.avg(WatchHistory.watch_duration), 0),
    ).filter(WatchHistory.user_id == user_id).one())

    watch_time = func.sum(WatchHistory.watch_duration).label("watch_time")
    top = (db.session.query(Channel, watch_time, func.count(WatchHistory.id))
           .join(WatchHistory, WatchHistory.channel_id == Channel.id)
           .filter(WatchHistory.user_id == user_id)
           .group_by(Channel.id)
           .order_by(watch_time.desc(), Channel.id.asc())
           .limit(5)
           .all())

    return send_response("Watch statistics retrieved", {
        "total_watch_time": int(total_time),
        "total_sessions": sessions,
        "unique_channels": channels,
        "average_session_time": round(float(average), 2),
        "most_watched_channels": [
            {
                "channel": {"id": c.id, "name": c.name, "logo": c.logo, "thumbnail": c.thumbnail},
                "total_watch_time": int(seconds or 0),
                "session_count": count,
            }
            for c, seconds, count in top
        ],
    })
#----------------------------------------------------------------------
@watch_history.route("/admin/all", methods=["GET"])
@login_required
@admin_required
def list_all_history():
    page, limit = get_page_args()
    query = WatchHistory.query
    user_id = request.args.get("user_id", type=int)
    if user_id:
        query = query.filter(WatchHistory.user_id == user_id)
    channel_id = request.args.get("channel_id", type=int)
    if channel_id:
        query = query.filter(WatchHistory.channel_id == channel_id)

    query = query.order_by(WatchHistory.watched_at.desc(), WatchHistory.id.desc())
    items, pagination = paginate(query, page, limit)
    return send_response("Watch history retrieved", [w.to_dict() for w in items], pagination=pagination)
