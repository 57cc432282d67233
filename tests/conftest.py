from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token

from iptvhub import create_app
from iptvhub.modules import db as _db
from iptvhub.db import User, Category, Channel, Subscription
from iptvhub.entitlements import utc_now

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "RATELIMIT_ENABLED": False,
    "SECRET_KEY": "test-secret-key-with-enough-length-for-hmac",
    "JWT_SECRET_KEY": "test-jwt-secret-key-with-enough-length-for-hs256",
    "STREAM_TOKEN_SECRET": "test-stream-secret",
    "STREAM_TOKEN_TTL": 3600,
    "STREAMING_BASE_URL": "http://edge.test",
    "EDGE_API_KEY": None,
    "PAYMENT_WEBHOOK_SECRET": None,
    "SUBSCRIPTION_SWEEP_INTERVAL": 0,
}


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def factory(tier="free", days=None, status="active", role="user", password="secret123", sub_status="active"):
        counter["n"] += 1
        user = User(
            name=f"User {counter['n']}",
            email=f"user{counter['n']}@example.com",
            sid=User.next_sid(),
            role=role,
            is_admin=(role == "admin"),
            status=status,
        )
        user.set_password(password)
        _db.session.add(user)
        _db.session.flush()

        if tier is not None:
            end_date = None if days is None else utc_now() + timedelta(days=days)
            _db.session.add(Subscription(user_id=user.id, subscription_type=tier,
                                         status=sub_status, end_date=end_date))
        _db.session.commit()
        return user

    return factory


@pytest.fixture
def auth_headers(app):
    def build(user):
        token = create_access_token(identity=str(user.id))
        return {"Authorization": f"Bearer {token}"}
    return build


@pytest.fixture
def category(app):
    row = Category(name="Sports", slug="sports")
    _db.session.add(row)
    _db.session.commit()
    return row


@pytest.fixture
def make_channel(app, category):
    counter = {"n": 0}

    def factory(is_premium=False, status="active", is_online=True, **kwargs):
        counter["n"] += 1
        channel = Channel(
            name=kwargs.pop("name", f"Channel {counter['n']}"),
            slug=kwargs.pop("slug", f"channel-{counter['n']}"),
            category_id=category.id,
            stream_url=kwargs.pop("stream_url", f"https://origin.example.com/live/{counter['n']}.m3u8"),
            is_premium=is_premium,
            status=status,
            is_online=is_online,
            **kwargs,
        )
        _db.session.add(channel)
        _db.session.commit()
        return channel

    return factory
