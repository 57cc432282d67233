#=====================================
#        >>>> STREAM ACCESS GATE <<<<
#=====================================
# gate.py
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlencode

from .entitlements import EntitlementResolver, Tier, is_valid, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelRecord:
    id: int
    is_premium: bool
    status: str
    is_online: bool
    stream_url: str

    @property
    def is_servable(self):
        return self.status == "active" and bool(self.is_online)


class DenyReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    INSUFFICIENT_TIER = "insufficient_tier"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INVALID_TOKEN = "invalid_token"


@dataclass(frozen=True)
class Granted:
    channel_id: int
    proxy_url: str
    token: str
    expires_at: int


@dataclass(frozen=True)
class Released:
    channel_id: int
    real_url: str


@dataclass(frozen=True)
class Denied:
    reason: DenyReason


def allows(channel, entitlement, now=None):
    """Free channels admit everyone; premium ones need a valid paid tier."""
    if not channel.is_premium:
        return True
    if entitlement is None:
        return False
    return is_valid(entitlement, now or utc_now()) and entitlement.tier != Tier.FREE


class AccessGate:

    def __init__(self, store, signer, ttl_seconds=3600,
                 streaming_base_url="http://localhost:5000", clock=utc_now):
        self.store = store
        self.signer = signer
        self.resolver = EntitlementResolver(store, clock=clock)
        self.ttl_seconds = ttl_seconds
        self.streaming_base_url = streaming_base_url.rstrip("/")
        self.clock = clock

    def _load_channel(self, channel_id) -> Union[ChannelRecord, Denied]:
        try:
            channel = self.store.get_channel(channel_id)
        except Exception:
            logger.exception(f"Channel lookup failed for channel={channel_id}")
            return Denied(DenyReason.UPSTREAM_UNAVAILABLE)
        if channel is None or not channel.is_servable:
            return Denied(DenyReason.NOT_FOUND)
        return channel

    def _check_entitlement(self, channel, subject_id) -> Optional[Denied]:
        # Any failure while resolving denies the request
        try:
            entitlement = self.resolver.resolve(subject_id)
        except Exception:
            logger.exception(f"Entitlement lookup failed for subject={subject_id}")
            return Denied(DenyReason.UPSTREAM_UNAVAILABLE)

        if not allows(channel, entitlement, self.clock()):
            logger.info(f"Premium channel={channel.id} denied for subject={subject_id}")
            return Denied(DenyReason.INSUFFICIENT_TIER)
        return None

    def proxy_url(self, channel_id, subject_id, token):
        query = urlencode({
            "token": token.signature,
            "subjectId": subject_id,
            "expiresAt": token.expires_at,
        })
        return f"{self.streaming_base_url}/stream/{channel_id}?{query}"

    def request_stream(self, channel_id, subject_id, watch_meta=None) -> Union[Granted, Denied]:
        channel = self._load_channel(channel_id)
        if isinstance(channel, Denied):
            return channel

        denied = self._check_entitlement(channel, subject_id)
        if denied:
            return denied

        token = self.signer.issue(channel.id, subject_id, self.ttl_seconds)
        granted = Granted(
            channel_id=channel.id,
            proxy_url=self.proxy_url(channel.id, subject_id, token),
            token=token.signature,
            expires_at=token.expires_at,
        )

        try:
            self.store.record_watch(subject_id, channel.id, watch_meta or {})
        except Exception as e:
            logger.warning(f"Could not record watch history for subject={subject_id} channel={channel.id}: {e}")
        try:
            self.store.increment_viewer_count(channel.id)
        except Exception as e:
            logger.warning(f"Could not bump viewer count for channel={channel.id}: {e}")

        return granted

    def verify_stream(self, channel_id, subject_id, expires_at, token) -> Union[Released, Denied]:
        if not self.signer.verify(channel_id, subject_id, expires_at, token):
            return Denied(DenyReason.INVALID_TOKEN)

        channel = self._load_channel(channel_id)
        if isinstance(channel, Denied):
            return channel

        denied = self._check_entitlement(channel, subject_id)
        if denied:
            return denied

        return Released(channel_id=channel.id, real_url=channel.stream_url)
