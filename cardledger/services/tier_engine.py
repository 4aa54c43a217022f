"""
Tier Engine.

Selects a customer's tier from cumulative spend against the tenant's tier
thresholds. Pure functions; BalanceLedger calls recompute_tier_for_customer
with the spend value it is about to write, in the same conditional update.
"""
from typing import Iterable, List, Optional

DEFAULT_TIER = 'SILVER'


def active_tier_rules(tier_rules: Iterable) -> List:
    """Active rules, highest threshold first (ties: higher multiplier, then name)."""
    return sorted(
        (r for r in tier_rules if r.is_active),
        key=lambda r: (r.min_total_spend_cents, r.multiplier_bps, r.tier),
        reverse=True,
    )


def lowest_tier(tier_rules: Iterable, default: str = DEFAULT_TIER) -> str:
    """Entry tier for new customers: the lowest active threshold, or default."""
    rules = active_tier_rules(tier_rules)
    return rules[-1].tier if rules else default


def recompute_tier(total_spend_cents: int, tier_rules: Iterable, default: str = DEFAULT_TIER) -> str:
    """
    Tier for a spend value.

    The active rule with the highest threshold <= spend wins. When nothing
    qualifies the lowest defined tier is returned.
    """
    rules = active_tier_rules(tier_rules)
    for rule in rules:
        if total_spend_cents >= rule.min_total_spend_cents:
            return rule.tier
    return rules[-1].tier if rules else default


def tier_rank(tier: str, tier_rules: Iterable) -> int:
    """0 for the lowest active tier; -1 if the tier is not an active rule."""
    ascending = list(reversed(active_tier_rules(tier_rules)))
    for rank, rule in enumerate(ascending):
        if rule.tier == tier:
            return rank
    return -1


def is_upgrade(old_tier: Optional[str], new_tier: str, tier_rules: Iterable) -> bool:
    if old_tier == new_tier:
        return False
    rules = list(tier_rules)
    return tier_rank(new_tier, rules) > tier_rank(old_tier, rules)


def recompute_tier_for_customer(current_tier: Optional[str], total_spend_cents: int,
                                tier_rules: Iterable, default: str = DEFAULT_TIER,
                                allow_downgrade: bool = False) -> str:
    """
    Tier to persist alongside a new spend value.

    Returns current_tier unchanged when the computed tier is the same, or
    when it ranks lower and downgrades are not allowed.
    """
    rules = list(tier_rules)
    computed = recompute_tier(total_spend_cents, rules, default)
    if computed == current_tier:
        return current_tier
    if not allow_downgrade and current_tier and tier_rank(current_tier, rules) > tier_rank(computed, rules):
        return current_tier
    return computed


def calculate_tier_progress(current_tier: Optional[str], total_spend_cents: int,
                            tier_rules: Iterable) -> dict:
    """
    Read-only progress toward the next tier.

    progress_to_next is a percentage of the next threshold, capped at 100.
    At the top tier next_tier is None and progress is 100.
    """
    ascending = list(reversed(active_tier_rules(tier_rules)))
    tier = current_tier or recompute_tier(total_spend_cents, ascending)

    current_min = 0
    current_rank = -1
    for rank, rule in enumerate(ascending):
        if rule.tier == tier:
            current_min = rule.min_total_spend_cents
            current_rank = rank
            break

    next_rule = None
    for rank, rule in enumerate(ascending):
        if rank > current_rank and rule.min_total_spend_cents > total_spend_cents:
            next_rule = rule
            break

    if next_rule is None:
        return {
            'current_tier': tier,
            'current_spend_cents': total_spend_cents,
            'current_tier_min_cents': current_min,
            'next_tier': None,
            'next_tier_min_cents': None,
            'progress_to_next': 100.0,
            'remaining_to_next_cents': 0,
        }

    next_min = next_rule.min_total_spend_cents
    progress = min(100.0, round(total_spend_cents / next_min * 100, 2)) if next_min else 100.0
    return {
        'current_tier': tier,
        'current_spend_cents': total_spend_cents,
        'current_tier_min_cents': current_min,
        'next_tier': next_rule.tier,
        'next_tier_min_cents': next_min,
        'progress_to_next': progress,
        'remaining_to_next_cents': max(0, next_min - total_spend_cents),
    }
