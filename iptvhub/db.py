#======================================
#                     >>>>DB MODEL<<<<
#======================================
# db.py
import math
import random
import re
import string
import time
from datetime import timedelta

from sqlalchemy import func
from werkzeug.security import generate_password_hash, check_password_hash

from .modules import db
from .entitlements import Entitlement, Tier, utc_now
from .errors import Conflict


def slugify(value):
    return re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")


def iso(value):
    return value.isoformat() if value else None


# Largest value a BIGINT / SQLite INTEGER primary key can hold
MAX_ROW_ID = 2 ** 63 - 1


def get_by_id(model, row_id):
    """Primary-key lookup that treats ids outside the column range as missing."""
    if not 0 < row_id <= MAX_ROW_ID:
        return None
    return db.session.get(model, row_id)

#======================================
#               >>>>USERS<<<<
#======================================
class User(db.Model):
    __tablename__ = "users"

    FIRST_SID = 100001

    id = db.Column(db.Integer, primary_key=True)
    sid = db.Column(db.Integer, unique=True, nullable=False, index=True)  # public numeric login id

    # Basic Info
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)  # hashed
    phone = db.Column(db.String(20), nullable=True)
    avatar = db.Column(db.String(500), nullable=True)

    # Role & Status
    role = db.Column(db.String(20), default="user", nullable=False)  # user | moderator | admin
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)  # active | suspended | deleted
    email_verified = db.Column(db.Boolean, default=False, nullable=False)

    # Timestamps
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    subscriptions = db.relationship("Subscription", back_populates="user", cascade="all, delete-orphan", lazy="dynamic")
    payments = db.relationship("Payment", back_populates="user", cascade="all, delete-orphan", lazy="dynamic")
    watch_history = db.relationship("WatchHistory", back_populates="user", cascade="all, delete-orphan", lazy="dynamic")
    manual_payments = db.relationship("ManualPayment", back_populates="user", cascade="all, delete-orphan", lazy="dynamic")

    # ------------------------
    # Logic | Helpers
    # ------------------------
    @classmethod
    def next_sid(cls):
        current = db.session.query(func.max(cls.sid)).scalar()
        return cls.FIRST_SID if current is None else max(current + 1, cls.FIRST_SID)

    @classmethod
    def find_by_identifier(cls, identifier):
        """Login accepts either the numeric SID or the email address."""
        identifier = (identifier or "").strip()
        if identifier.isdigit():
            return cls.query.filter_by(sid=int(identifier)).first()
        return cls.query.filter(func.lower(cls.email) == identifier.lower()).first()

    def set_password(self, raw):
        self.password = generate_password_hash(raw)

    def check_password(self, raw):
        return check_password_hash(self.password, raw)

    @property
    def has_admin_access(self):
        return self.role == "admin" or bool(self.is_admin)

    def to_dict(self):
        return {
            "id": self.id,
            "sid": self.sid,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "avatar": self.avatar,
            "role": self.role,
            "is_admin": self.is_admin,
            "status": self.status,
            "email_verified": self.email_verified,
            "last_login": iso(self.last_login),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

class RevokedToken(db.Model):
    """Access tokens given up on logout, keyed by their jti."""
    __tablename__ = "revoked_tokens"

    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(64), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    @classmethod
    def is_revoked(cls, jti):
        return cls.query.filter_by(jti=jti).first() is not None

    @classmethod
    def purge_expired(cls, now=None):
        now = now or utc_now()
        count = cls.query.filter(cls.expires_at.isnot(None), cls.expires_at <= now).delete(synchronize_session=False)
        db.session.commit()
        return count

#======================================
#         >>>>CATEGORIES & CHANNELS<<<<
#======================================
class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(500), nullable=True)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)  # active | inactive
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    channels = db.relationship("Channel", back_populates="category", lazy="dynamic")

    def to_dict(self, include_count=False):
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "icon": self.icon,
            "sort_order": self.sort_order,
            "status": self.status,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_count:
            data["channel_count"] = self.channels.filter_by(status="active").count()
        return data


CHANNEL_QUALITIES = ("SD", "HD", "FHD", "4K")
CHANNEL_LANGUAGES = ("Bangla", "English", "Hindi", "Arabic", "Other")
CHANNEL_STATUSES = ("active", "inactive", "maintenance")


class Channel(db.Model):
    __tablename__ = "channels"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)

    # Never serialized, only released through a verified stream token
    stream_url = db.Column(db.Text, nullable=False)

    thumbnail = db.Column(db.String(500), nullable=True)
    logo = db.Column(db.String(500), nullable=True)
    is_premium = db.Column(db.Boolean, default=False, nullable=False)
    is_online = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    viewer_count = db.Column(db.Integer, default=0, nullable=False)
    quality = db.Column(db.String(10), default="HD", nullable=False)
    language = db.Column(db.String(20), default="Bangla", nullable=False)
    country = db.Column(db.String(50), default="Bangladesh", nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    category = db.relationship("Category", back_populates="channels")

    @property
    def is_servable(self):
        return self.status == "active" and bool(self.is_online)

    def to_dict(self, include_category=True):
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "category_id": self.category_id,
            "thumbnail": self.thumbnail,
            "logo": self.logo,
            "is_premium": self.is_premium,
            "is_online": self.is_online,
            "sort_order": self.sort_order,
            "viewer_count": self.viewer_count,
            "quality": self.quality,
            "language": self.language,
            "country": self.country,
            "status": self.status,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_category and self.category is not None:
            data["category"] = {
                "id": self.category.id,
                "name": self.category.name,
                "slug": self.category.slug,
            }
        return data

#======================================
#            >>>>SUBSCRIPTIONS<<<<
#======================================
class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subscription_type = db.Column(db.String(20), default="free", nullable=False)  # free | basic | premium | vip
    status = db.Column(db.String(20), default="active", nullable=False)  # active | expired | cancelled | suspended
    start_date = db.Column(db.DateTime, default=utc_now, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)  # None for free
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)
    auto_renewal = db.Column(db.Boolean, default=False, nullable=False)
    grace_period_end = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    user = db.relationship("User", back_populates="subscriptions")
    payment = db.relationship("Payment")

    @classmethod
    def create_free(cls, user_id):
        subscription = cls(user_id=user_id, subscription_type=Tier.FREE.value, status="active",
                           start_date=utc_now(), end_date=None)
        db.session.add(subscription)
        return subscription

    @classmethod
    def get_active_by_user(cls, user_id):
        # Most recent active row wins
        return (cls.query
                .filter_by(user_id=user_id, status="active")
                .order_by(cls.created_at.desc(), cls.id.desc())
                .first())

    @classmethod
    def deactivate_for_user(cls, user_id, reason="Replaced by a new subscription"):
        now = utc_now()
        rows = cls.query.filter_by(user_id=user_id, status="active").all()
        for row in rows:
            row.status = "cancelled"
            row.cancelled_at = now
            row.cancellation_reason = reason
        return len(rows)

    @classmethod
    def expire_old_subscriptions(cls, now=None):
        now = now or utc_now()
        count = (cls.query
                 .filter(cls.status == "active",
                         cls.subscription_type != Tier.FREE.value,
                         cls.end_date.isnot(None),
                         cls.end_date <= now)
                 .update({cls.status: "expired", cls.updated_at: now}, synchronize_session=False))
        db.session.commit()
        return count

    @classmethod
    def get_expiring(cls, days=7, now=None):
        now = now or utc_now()
        return (cls.query
                .filter(cls.status == "active",
                        cls.subscription_type != Tier.FREE.value,
                        cls.end_date > now,
                        cls.end_date <= now + timedelta(days=days))
                .order_by(cls.end_date.asc())
                .all())

    def to_entitlement(self):
        return Entitlement(
            subject_id=self.user_id,
            tier=Tier(self.subscription_type),
            status=self.status,
            active_until=self.end_date,
        )

    def is_active(self, now=None):
        return self.to_entitlement().is_valid(now)

    def has_premium_access(self, now=None):
        return self.subscription_type != Tier.FREE.value and self.is_active(now)

    def days_remaining(self, now=None):
        if self.end_date is None:
            return None
        now = now or utc_now()
        seconds = (self.end_date - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def extend(self, days):
        """Extend from the current end date if still ahead, otherwise from now."""
        now = utc_now()
        base = self.end_date if self.end_date and self.end_date > now else now
        self.end_date = base + timedelta(days=days)
        self.status = "active"
        return self

    def cancel(self, reason=None):
        self.status = "cancelled"
        self.auto_renewal = False
        self.cancelled_at = utc_now()
        self.cancellation_reason = reason
        return self

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subscription_type": self.subscription_type,
            "status": self.status,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "payment_id": self.payment_id,
            "auto_renewal": self.auto_renewal,
            "grace_period_end": iso(self.grace_period_end),
            "cancelled_at": iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "is_active": self.is_active(),
            "days_remaining": self.days_remaining(),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

#======================================
#               >>>>PAYMENTS<<<<
#======================================
PAYMENT_METHODS = ("bkash", "nagad", "rocket", "card", "manual")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded", "cancelled")
SUBSCRIPTION_DURATIONS = (30, 90, 365)


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    transaction_id = db.Column(db.String(64), unique=True, nullable=False)
    gateway_transaction_id = db.Column(db.String(100), nullable=True)  # bKash / Nagad trx id
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), default="BDT", nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), default="pending", nullable=False)
    subscription_type = db.Column(db.String(20), nullable=False)
    subscription_duration = db.Column(db.Integer, nullable=False)  # days
    discount_amount = db.Column(db.Float, default=0, nullable=False)
    coupon_code = db.Column(db.String(50), nullable=True)
    payment_date = db.Column(db.DateTime, nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.String(500), nullable=True)
    refund_amount = db.Column(db.Float, nullable=True)
    refund_date = db.Column(db.DateTime, nullable=True)
    refund_reason = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    user = db.relationship("User", back_populates="payments")

    @staticmethod
    def generate_transaction_id():
        suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
        return f"TXN_{int(time.time() * 1000)}_{suffix}"

    @property
    def net_amount(self):
        return round((self.amount or 0) - (self.discount_amount or 0), 2)

    def mark_completed(self, gateway_transaction_id=None, gateway_response=None):
        self.status = "completed"
        self.payment_date = utc_now()
        if gateway_transaction_id:
            self.gateway_transaction_id = gateway_transaction_id
        if gateway_response is not None:
            self.gateway_response = gateway_response
        return self

    def mark_failed(self, reason=None, gateway_response=None):
        self.status = "failed"
        self.failure_reason = reason
        if gateway_response is not None:
            self.gateway_response = gateway_response
        return self

    def process_refund(self, amount=None, reason=None):
        if self.status != "completed":
            raise Conflict("Only completed payments can be refunded")
        self.status = "refunded"
        self.refund_amount = self.net_amount if amount is None else amount
        self.refund_date = utc_now()
        self.refund_reason = reason
        return self

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transaction_id": self.transaction_id,
            "gateway_transaction_id": self.gateway_transaction_id,
            "amount": self.amount,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status,
            "subscription_type": self.subscription_type,
            "subscription_duration": self.subscription_duration,
            "discount_amount": self.discount_amount,
            "net_amount": self.net_amount,
            "coupon_code": self.coupon_code,
            "payment_date": iso(self.payment_date),
            "failure_reason": self.failure_reason,
            "refund_amount": self.refund_amount,
            "refund_date": iso(self.refund_date),
            "refund_reason": self.refund_reason,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

#======================================
#           >>>>MANUAL PAYMENTS<<<<
#======================================
MANUAL_PAYMENT_STATUSES = ("pending", "confirmed", "rejected")
MANUAL_PAYMENT_MAX_MONTHS = 12


class ManualPayment(db.Model):
    """A bKash send-money transfer reported by the user and reviewed by an admin."""
    __tablename__ = "manual_payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subscription_type = db.Column(db.String(20), nullable=False)
    months = db.Column(db.Integer, nullable=False)
    amount = db.Column(db.Float, nullable=False)
    sender_number = db.Column(db.String(20), nullable=False)
    transaction_id = db.Column(db.String(64), unique=True, nullable=False)  # as typed by the user
    status = db.Column(db.String(20), default="pending", nullable=False)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)  # set on approval
    reviewed_by = db.Column(db.Integer, nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    note = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    user = db.relationship("User", back_populates="manual_payments")

    @property
    def duration_days(self):
        return self.months * 30

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subscription_type": self.subscription_type,
            "months": self.months,
            "amount": self.amount,
            "sender_number": self.sender_number,
            "transaction_id": self.transaction_id,
            "payment_method": "manual",
            "status": self.status,
            "payment_id": self.payment_id,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": iso(self.reviewed_at),
            "note": self.note,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

#======================================
#            >>>>WATCH HISTORY<<<<
#======================================
DEVICE_TYPES = ("mobile", "desktop", "tablet", "smart_tv", "unknown")


class WatchHistory(db.Model):
    __tablename__ = "watch_history"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True)
    watch_duration = db.Column(db.Integer, default=0, nullable=False)  # seconds
    watched_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)
    device_type = db.Column(db.String(20), default="unknown", nullable=False)
    session_id = db.Column(db.String(100), nullable=True, index=True)
    country = db.Column(db.String(50), nullable=True)
    city = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    user = db.relationship("User", back_populates="watch_history")
    channel = db.relationship("Channel")

    @staticmethod
    def detect_device_type(user_agent):
        ua = (user_agent or "").lower()
        if not ua:
            return "unknown"
        if any(k in ua for k in ("mobile", "android", "iphone")):
            return "mobile"
        if any(k in ua for k in ("tablet", "ipad")):
            return "tablet"
        if any(k in ua for k in ("smart-tv", "smarttv", "tizen", "webos")):
            return "smart_tv"
        if any(k in ua for k in ("mozilla", "chrome", "safari", "firefox")):
            return "desktop"
        return "unknown"

    @staticmethod
    def default_session_id(user_id, channel_id):
        return f"{user_id}_{channel_id}_{int(time.time() * 1000)}"

    @classmethod
    def record_session(cls, user_id, channel_id, session_id=None, duration=0, **meta):
        """Add to an existing (user, channel, session) row or start a new one. Caller commits."""
        entry = None
        if session_id:
            entry = cls.query.filter_by(user_id=user_id, channel_id=channel_id, session_id=session_id).first()

        if entry:
            entry.watch_duration += int(duration or 0)
            entry.watched_at = utc_now()
            return entry

        entry = cls(
            user_id=user_id,
            channel_id=channel_id,
            session_id=session_id or cls.default_session_id(user_id, channel_id),
            watch_duration=int(duration or 0),
            ip_address=meta.get("ip_address"),
            user_agent=meta.get("user_agent"),
            device_type=meta.get("device_type") or cls.detect_device_type(meta.get("user_agent")),
            country=meta.get("country"),
            city=meta.get("city"),
        )
        db.session.add(entry)
        return entry

    @property
    def formatted_duration(self):
        total = int(self.watch_duration or 0)
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def to_dict(self, include_channel=True):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "channel_id": self.channel_id,
            "watch_duration": self.watch_duration,
            "formatted_duration": self.formatted_duration,
            "watched_at": iso(self.watched_at),
            "device_type": self.device_type,
            "session_id": self.session_id,
            "country": self.country,
            "city": self.city,
            "created_at": iso(self.created_at),
        }
        if include_channel and self.channel is not None:
            data["channel"] = {
                "id": self.channel.id,
                "name": self.channel.name,
                "logo": self.channel.logo,
                "is_premium": self.channel.is_premium,
            }
        return data
