"""
Cashback rate resolution.

Pure functions over rule data already loaded by the caller (ORM rows or the
cached snapshots from RuleService; both expose the same attributes).

    cashback = round_half_up(amount * base_rate_bps / 10000 * multiplier_bps / 10000)
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from ..utils.exceptions import InvalidAmountError

BPS = Decimal(10000)
ONE_X_MULTIPLIER_BPS = 10000


def _value(enum_or_str):
    return getattr(enum_or_str, 'value', enum_or_str)


def _in_window(rule, now: datetime) -> bool:
    starts_at = getattr(rule, 'starts_at', None)
    ends_at = getattr(rule, 'ends_at', None)
    if starts_at and now < starts_at:
        return False
    if ends_at and now > ends_at:
        return False
    return True


def select_cashback_rule(category, rules: Iterable, now: datetime = None):
    """
    Authoritative rule for a category: the newest active rule whose
    promotional window (if any) contains now. None when nothing applies.
    """
    now = now or datetime.utcnow()
    category = _value(category)
    candidates = [
        r for r in rules
        if r.category == category and r.is_active and _in_window(r, now)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda r: (r.created_at or datetime.min, r.id or 0))


def compute_cashback(amount_cents: int, category, tier_multiplier_bps: int,
                     rules: Iterable, now: datetime = None) -> int:
    """
    Cashback in cents for a purchase.

    No active rule for the category means a base rate of 0, not an error.
    """
    if amount_cents < 0:
        raise InvalidAmountError('Purchase amount cannot be negative')
    if tier_multiplier_bps is None:
        tier_multiplier_bps = ONE_X_MULTIPLIER_BPS

    rule = select_cashback_rule(category, rules, now)
    base_rate_bps = rule.base_rate_bps if rule else 0
    if base_rate_bps <= 0 or amount_cents == 0:
        return 0

    raw = Decimal(amount_cents) * Decimal(base_rate_bps) / BPS * Decimal(tier_multiplier_bps) / BPS
    return int(raw.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def resolve_tier_multiplier(tier: Optional[str], tier_rules: Iterable) -> int:
    """Multiplier of the customer's active tier rule; 1x when no rule matches."""
    for rule in tier_rules:
        if rule.is_active and rule.tier == tier:
            return rule.multiplier_bps
    return ONE_X_MULTIPLIER_BPS
