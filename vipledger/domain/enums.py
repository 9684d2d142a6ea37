# vipledger/domain/enums.py
import enum


class UserRole(str, enum.Enum):
    artist = "artist"
    vip = "vip"
    staff = "staff"
    admin = "admin"


class VIPTier(str, enum.Enum):
    silver = "silver"
    gold = "gold"
    black = "black"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER = (VIPTier.silver, VIPTier.gold, VIPTier.black)


class VIPStatus(str, enum.Enum):
    active = "active"
    suspended = "suspended"
    cancelled = "cancelled"


class PointsSource(str, enum.Enum):
    event_checkin = "event_checkin"
    consumption = "consumption"
    consumption_pos = "consumption_pos"
    manual_adjust = "manual_adjust"
    tier_bonus = "tier_bonus"


# Sources whose award is derived from a spend amount in minor currency units.
MONETARY_SOURCES = frozenset({PointsSource.consumption, PointsSource.consumption_pos})


class ConsumptionSource(str, enum.Enum):
    manual = "manual"
    pos = "pos"


class POSOrderStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"


class NFCCardType(str, enum.Enum):
    artist = "artist"
    vip = "vip"
    staff = "staff"
    guest = "guest"


class CheckInSource(str, enum.Enum):
    artist_profile = "artist_profile"
    vip_pass = "vip_pass"
    event_checkin = "event_checkin"
    admin = "admin"
