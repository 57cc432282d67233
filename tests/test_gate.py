from datetime import datetime, timedelta
from urllib.parse import urlparse, parse_qs

import pytest

from iptvhub.entitlements import Entitlement, Tier
from iptvhub.errors import UpstreamUnavailable
from iptvhub.gate import AccessGate, ChannelRecord, Denied, DenyReason, Granted, Released
from iptvhub.stream_token import StreamTokenSigner

NOW = datetime(2026, 1, 1, 12, 0, 0)
T0 = 1_800_000_000
REAL_URL = "https://origin.example.com/secret/premium.m3u8"


class FakeStore:
    def __init__(self):
        self.channels = {}
        self.entitlements = {}
        self.watches = []
        self.viewer_counts = {}
        self.fail_entitlements = False
        self.fail_channels = False
        self.fail_side_effects = False

    def add_channel(self, channel_id, is_premium=False, status="active", is_online=True):
        self.channels[channel_id] = ChannelRecord(channel_id, is_premium, status, is_online, REAL_URL)

    def get_channel(self, channel_id):
        if self.fail_channels:
            raise UpstreamUnavailable()
        return self.channels.get(channel_id)

    def get_current_entitlement(self, subject_id):
        if self.fail_entitlements:
            raise UpstreamUnavailable()
        return self.entitlements.get(subject_id)

    def record_watch(self, subject_id, channel_id, meta):
        if self.fail_side_effects:
            raise UpstreamUnavailable()
        self.watches.append((subject_id, channel_id, meta))

    def increment_viewer_count(self, channel_id):
        if self.fail_side_effects:
            raise RuntimeError("counter down")
        self.viewer_counts[channel_id] = self.viewer_counts.get(channel_id, 0) + 1


@pytest.fixture
def store():
    store = FakeStore()
    store.add_channel(1, is_premium=False)
    store.add_channel(2, is_premium=True)
    return store


@pytest.fixture
def clock():
    return {"now": T0}


@pytest.fixture
def gate(store, clock):
    signer = StreamTokenSigner("gate-secret", clock=lambda: clock["now"])
    return AccessGate(store, signer, ttl_seconds=3600, streaming_base_url="http://edge.test/",
                      clock=lambda: NOW)


def grant(store, subject_id, tier, days=None, status="active"):
    until = None if days is None else NOW + timedelta(days=days)
    store.entitlements[subject_id] = Entitlement(subject_id, Tier(tier), status, until)


class TestRequestStream:

    def test_premium_subscriber_gets_premium_channel(self, gate, store):
        grant(store, 10, "premium", days=10)

        result = gate.request_stream(2, 10)

        assert isinstance(result, Granted)
        assert result.expires_at == T0 + 3600
        assert REAL_URL not in result.proxy_url
        parsed = urlparse(result.proxy_url)
        assert parsed.netloc == "edge.test"
        assert parsed.path == "/stream/2"
        query = parse_qs(parsed.query)
        assert query["token"] == [result.token]
        assert query["subjectId"] == ["10"]
        assert query["expiresAt"] == [str(T0 + 3600)]

    def test_lapsed_premium_is_denied(self, gate, store):
        grant(store, 10, "premium", days=-1)
        result = gate.request_stream(2, 10)
        assert result == Denied(DenyReason.INSUFFICIENT_TIER)

    def test_free_tier_is_denied_premium(self, gate, store):
        grant(store, 10, "free")
        assert gate.request_stream(2, 10) == Denied(DenyReason.INSUFFICIENT_TIER)

    def test_no_entitlement_allows_free_channel(self, gate, store):
        assert isinstance(gate.request_stream(1, 99), Granted)

    def test_no_entitlement_denies_premium_channel(self, gate, store):
        assert gate.request_stream(2, 99) == Denied(DenyReason.INSUFFICIENT_TIER)

    def test_unknown_channel(self, gate):
        assert gate.request_stream(404, 10) == Denied(DenyReason.NOT_FOUND)

    @pytest.mark.parametrize("status,is_online", [("inactive", True), ("maintenance", True), ("active", False)])
    def test_unservable_channel_looks_absent(self, gate, store, status, is_online):
        store.add_channel(3, status=status, is_online=is_online)
        assert gate.request_stream(3, 10) == Denied(DenyReason.NOT_FOUND)

    def test_entitlement_lookup_failure_fails_closed(self, gate, store):
        store.fail_entitlements = True
        result = gate.request_stream(1, 10)
        assert result == Denied(DenyReason.UPSTREAM_UNAVAILABLE)
        assert store.watches == []

    def test_channel_lookup_failure_fails_closed(self, gate, store):
        store.fail_channels = True
        assert gate.request_stream(1, 10) == Denied(DenyReason.UPSTREAM_UNAVAILABLE)

    def test_side_effects_recorded_on_grant(self, gate, store):
        grant(store, 10, "vip", days=30)
        gate.request_stream(2, 10, watch_meta={"user_agent": "Mozilla/5.0"})
        assert store.watches == [(10, 2, {"user_agent": "Mozilla/5.0"})]
        assert store.viewer_counts == {2: 1}

    def test_side_effect_failures_do_not_change_outcome(self, gate, store):
        store.fail_side_effects = True
        assert isinstance(gate.request_stream(1, 10), Granted)

    def test_no_side_effects_on_denial(self, gate, store):
        gate.request_stream(2, 10)
        assert store.watches == []
        assert store.viewer_counts == {}


class TestVerifyStream:

    def test_releases_real_url(self, gate, store):
        grant(store, 10, "premium", days=10)
        granted = gate.request_stream(2, 10)

        result = gate.verify_stream(2, 10, granted.expires_at, granted.token)

        assert result == Released(channel_id=2, real_url=REAL_URL)

    def test_repeat_verification_succeeds(self, gate, store):
        granted = gate.request_stream(1, 10)
        first = gate.verify_stream(1, 10, granted.expires_at, granted.token)
        second = gate.verify_stream(1, 10, granted.expires_at, granted.token)
        assert first == second
        assert isinstance(first, Released)

    def test_expired_token(self, gate, clock):
        granted = gate.request_stream(1, 10)
        clock["now"] = T0 + 3601
        assert gate.verify_stream(1, 10, granted.expires_at, granted.token) == Denied(DenyReason.INVALID_TOKEN)

    def test_token_for_other_channel(self, gate, store):
        store.add_channel(3)
        granted = gate.request_stream(1, 10)
        assert gate.verify_stream(3, 10, granted.expires_at, granted.token) == Denied(DenyReason.INVALID_TOKEN)

    def test_token_for_other_subject(self, gate):
        granted = gate.request_stream(1, 10)
        assert gate.verify_stream(1, 11, granted.expires_at, granted.token) == Denied(DenyReason.INVALID_TOKEN)

    def test_entitlement_rechecked_at_verification(self, gate, store):
        grant(store, 10, "premium", days=10)
        granted = gate.request_stream(2, 10)
        grant(store, 10, "premium", days=10, status="cancelled")

        assert gate.verify_stream(2, 10, granted.expires_at, granted.token) == Denied(DenyReason.INSUFFICIENT_TIER)

    def test_channel_taken_offline_after_issue(self, gate, store):
        granted = gate.request_stream(1, 10)
        store.add_channel(1, is_online=False)
        assert gate.verify_stream(1, 10, granted.expires_at, granted.token) == Denied(DenyReason.NOT_FOUND)

    def test_lookup_failure_at_verification_fails_closed(self, gate, store):
        granted = gate.request_stream(1, 10)
        store.fail_entitlements = True
        assert gate.verify_stream(1, 10, granted.expires_at, granted.token) == Denied(DenyReason.UPSTREAM_UNAVAILABLE)
