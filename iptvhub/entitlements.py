#=====================================
#        >>>> ENTITLEMENTS <<<<
#=====================================
# entitlements.py
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def utc_now():
    """Naive UTC timestamp, the format every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Tier(str, enum.Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    VIP = "vip"


PAID_TIERS = (Tier.BASIC, Tier.PREMIUM, Tier.VIP)
SUBSCRIPTION_STATUSES = ("active", "expired", "cancelled", "suspended")


@dataclass(frozen=True)
class Entitlement:
    subject_id: int
    tier: Tier
    status: str
    active_until: Optional[datetime] = None

    def is_valid(self, now=None):
        return is_valid(self, now or utc_now())

    @property
    def is_paid(self):
        return self.tier != Tier.FREE


def is_valid(entitlement, now):
    """
    free  -> valid while status is active (no expiry)
    paid  -> valid while status is active and active_until is still ahead of now
    """
    if entitlement is None or entitlement.status != "active":
        return False
    if entitlement.tier == Tier.FREE:
        return True
    return entitlement.active_until is not None and entitlement.active_until > now


class EntitlementResolver:
    """Maps a subject to its current entitlement through the persistence store."""

    def __init__(self, store, clock=utc_now):
        self.store = store
        self.clock = clock

    def resolve(self, subject_id) -> Optional[Entitlement]:
        # None means "no active row", which is not the same as "found but expired"
        return self.store.get_current_entitlement(subject_id)

    def is_valid(self, entitlement, now=None) -> bool:
        return is_valid(entitlement, now or self.clock())
