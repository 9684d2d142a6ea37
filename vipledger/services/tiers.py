"""Tier derivation from lifetime points.

Tiers depend only on ``lifetime_points``, which never decreases, so a member
can only move up.
"""

from __future__ import annotations

from dataclasses import dataclass

from vipledger.core.config import settings
from vipledger.domain.enums import VIPTier


@dataclass(frozen=True)
class TierThresholds:
    gold: int
    black: int

    @classmethod
    def from_settings(cls) -> "TierThresholds":
        return cls(gold=settings.VIP_TIER_GOLD_THRESHOLD, black=settings.VIP_TIER_BLACK_THRESHOLD)

    def minimum_for(self, tier: VIPTier) -> int:
        if tier == VIPTier.black:
            return self.black
        if tier == VIPTier.gold:
            return self.gold
        return 0


def calculate_tier(lifetime_points: int, thresholds: TierThresholds | None = None) -> VIPTier:
    thresholds = thresholds or TierThresholds.from_settings()
    if lifetime_points >= thresholds.black:
        return VIPTier.black
    if lifetime_points >= thresholds.gold:
        return VIPTier.gold
    return VIPTier.silver


def next_tier(tier: VIPTier) -> VIPTier | None:
    if tier == VIPTier.silver:
        return VIPTier.gold
    if tier == VIPTier.gold:
        return VIPTier.black
    return None


def progress(lifetime_points: int, thresholds: TierThresholds | None = None) -> tuple[VIPTier | None, int]:
    """Return the next tier and the lifetime points still missing to reach it."""
    thresholds = thresholds or TierThresholds.from_settings()
    upcoming = next_tier(calculate_tier(lifetime_points, thresholds))
    if upcoming is None:
        return None, 0
    return upcoming, max(0, thresholds.minimum_for(upcoming) - lifetime_points)
