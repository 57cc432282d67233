#=====================================
#        >>>> PERSISTENCE STORE <<<<
#=====================================
# store.py
# SQLAlchemy-backed collaborator for the access gate. Database errors
# surface as UpstreamUnavailable so the gate can fail closed.
from functools import wraps

from sqlalchemy.exc import SQLAlchemyError

from .modules import db
from .db import Channel, Subscription, WatchHistory, get_by_id
from .errors import UpstreamUnavailable
from .gate import ChannelRecord


def _upstream(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise UpstreamUnavailable("Database unavailable") from e
    return decorated_function


class SqlAlchemyStore:

    @_upstream
    def get_channel(self, channel_id):
        channel = get_by_id(Channel, int(channel_id))
        if channel is None:
            return None
        return ChannelRecord(
            id=channel.id,
            is_premium=channel.is_premium,
            status=channel.status,
            is_online=channel.is_online,
            stream_url=channel.stream_url,
        )

    @_upstream
    def get_current_entitlement(self, subject_id):
        subscription = Subscription.get_active_by_user(int(subject_id))
        return subscription.to_entitlement() if subscription else None

    @_upstream
    def record_watch(self, subject_id, channel_id, meta):
        meta = dict(meta)
        WatchHistory.record_session(
            int(subject_id),
            int(channel_id),
            session_id=meta.pop("session_id", None),
            duration=meta.pop("watch_duration", 0),
            **meta,
        )
        db.session.commit()

    @_upstream
    def increment_viewer_count(self, channel_id):
        # Single UPDATE, no read-modify-write
        Channel.query.filter_by(id=int(channel_id)).update(
            {Channel.viewer_count: Channel.viewer_count + 1},
            synchronize_session=False,
        )
        db.session.commit()
