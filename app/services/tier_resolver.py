"""
Tier Resolver.

Picks the one tier an agent's referral counters satisfy:

1. No tiers -> Tier 0.
2. Tiers are walked in descending min_referrals order.
3. Each tier compares the counter named by its behavior_requirement
   (verified -> verified_referrals, first_deal -> referrals_with_first_deal,
   anything else -> total_referrals) against [min_referrals, max_referrals].
4. The first tier that matches wins. No match -> Tier 0.

Known policy gap: with mixed behavior requirements the first match in
min_referrals order is not necessarily the highest level the agent could
hold. The order is an observable contract and is kept as is.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from ..models import BehaviorRequirement


BEHAVIOR_COUNTERS = {
    BehaviorRequirement.VERIFIED.value: 'verified_referrals',
    BehaviorRequirement.FIRST_DEAL.value: 'referrals_with_first_deal',
    BehaviorRequirement.NONE.value: 'total_referrals',
}


@dataclass(frozen=True)
class TierResolution:
    """Resolved tier. tier_id None means the Tier 0 sentinel."""
    name: str
    bonus_percentage: Decimal
    tier_id: Optional[int] = None
    level: int = 0

    @property
    def is_tier_zero(self) -> bool:
        return self.tier_id is None

    def to_dict(self):
        return {
            'tier_id': self.tier_id,
            'name': self.name,
            'level': self.level,
            'bonus_percentage': float(self.bonus_percentage),
        }


TIER_ZERO = TierResolution(name='Tier 0', bonus_percentage=Decimal('0'))


def comparison_value(tier, metrics: Mapping[str, int]) -> int:
    """Referral counter a tier is compared against."""
    counter = BEHAVIOR_COUNTERS.get(tier.behavior_requirement, 'total_referrals')
    return metrics.get(counter) or 0


def tier_matches(tier, metrics: Mapping[str, int]) -> bool:
    value = comparison_value(tier, metrics)
    within_max = tier.max_referrals is None or value <= tier.max_referrals
    return value >= (tier.min_referrals or 0) and within_max


def resolve_tier(tiers: Iterable, metrics: Mapping[str, int]) -> TierResolution:
    """
    Resolve an agent's tier from referral counters.

    Args:
        tiers: Active tiers (Tier models or TierSpec snapshots)
        metrics: total_referrals, verified_referrals, referrals_with_first_deal

    Returns:
        The first matching tier in descending min_referrals order, or TIER_ZERO
    """
    ordered = sorted(tiers, key=lambda t: t.min_referrals or 0, reverse=True)
    for tier in ordered:
        if tier_matches(tier, metrics):
            return TierResolution(
                name=tier.name,
                bonus_percentage=Decimal(str(tier.bonus_percentage or 0)),
                tier_id=tier.id,
                level=tier.level,
            )
    return TIER_ZERO
