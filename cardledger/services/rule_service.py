"""
Rule administration and the per-tenant rule cache.

Rule sets are read on every EARN. They are cached under a key that includes
Tenant.rules_version, and every edit bumps that version in the same
transaction as the edit, so a stale set is never served after a commit.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Tenant, CashbackRule, TierRule, TransactionCategory
from ..utils.cache import cache, cache_key
from ..utils.exceptions import TenantNotFoundError, NotFoundError, ValidationError
from . import tier_engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CashbackRuleSnapshot:
    id: int
    category: str
    base_rate_bps: int
    is_active: bool
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TierRuleSnapshot:
    id: int
    tier: str
    min_total_spend_cents: int
    multiplier_bps: int
    is_active: bool


@dataclass(frozen=True)
class RuleSet:
    tenant_id: int
    version: int
    cashback_rules: Tuple[CashbackRuleSnapshot, ...] = field(default_factory=tuple)
    tier_rules: Tuple[TierRuleSnapshot, ...] = field(default_factory=tuple)

    def default_tier(self, fallback: str = tier_engine.DEFAULT_TIER) -> str:
        return tier_engine.lowest_tier(self.tier_rules, fallback)


class RuleService:
    """Cashback and tier rule edits plus cached reads."""

    def get_rule_set(self, tenant_id: int) -> RuleSet:
        version = db.session.query(Tenant.rules_version).filter(Tenant.id == tenant_id).scalar()
        if version is None:
            raise TenantNotFoundError(tenant_id)

        key = cache_key('rules', tenant_id=tenant_id, version=version)
        rule_set = cache.get(key)
        if rule_set is not None:
            return rule_set

        rule_set = self._load(tenant_id, version)
        cache.set(key, rule_set, timeout=current_app.config.get('RULE_CACHE_TIMEOUT', 300))
        return rule_set

    def _load(self, tenant_id: int, version: int) -> RuleSet:
        cashback_rules = CashbackRule.query.filter_by(tenant_id=tenant_id, is_active=True).all()
        tier_rules = TierRule.query.filter_by(tenant_id=tenant_id, is_active=True).all()
        return RuleSet(
            tenant_id=tenant_id,
            version=version,
            cashback_rules=tuple(
                CashbackRuleSnapshot(
                    id=r.id,
                    category=r.category,
                    base_rate_bps=r.base_rate_bps,
                    is_active=r.is_active,
                    starts_at=r.starts_at,
                    ends_at=r.ends_at,
                    created_at=r.created_at,
                )
                for r in cashback_rules
            ),
            tier_rules=tuple(
                TierRuleSnapshot(
                    id=r.id,
                    tier=r.tier,
                    min_total_spend_cents=r.min_total_spend_cents,
                    multiplier_bps=r.multiplier_bps,
                    is_active=r.is_active,
                )
                for r in tier_rules
            ),
        )

    def _bump_version(self, tenant_id: int) -> None:
        result = db.session.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(rules_version=Tenant.rules_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TenantNotFoundError(tenant_id)

    def set_cashback_rule(self, tenant_id: int, category, base_rate_bps: int,
                          starts_at: datetime = None, ends_at: datetime = None) -> CashbackRule:
        """Add a cashback rule. The newest in-window rule for a category is authoritative."""
        try:
            category = TransactionCategory(getattr(category, 'value', category)).value
        except ValueError:
            raise ValidationError(f'Unknown category: {category}', field='category')
        if not isinstance(base_rate_bps, int) or isinstance(base_rate_bps, bool) or not 0 <= base_rate_bps <= 10000:
            raise ValidationError('base_rate_bps must be an integer between 0 and 10000', field='base_rate_bps')
        if starts_at and ends_at and ends_at <= starts_at:
            raise ValidationError('ends_at must be after starts_at', field='ends_at')

        rule = CashbackRule(
            tenant_id=tenant_id,
            category=category,
            base_rate_bps=base_rate_bps,
            starts_at=starts_at,
            ends_at=ends_at,
            is_active=True,
        )
        db.session.add(rule)
        self._bump_version(tenant_id)
        db.session.commit()

        logger.info(f'Cashback rule set: tenant={tenant_id} category={category} rate={base_rate_bps}bps')
        return rule

    def set_tier_rule(self, tenant_id: int, tier: str, min_total_spend_cents: int,
                      multiplier_bps: int = 10000) -> TierRule:
        """Create or update the threshold and multiplier for a tier name."""
        tier = (tier or '').strip().upper()
        if not tier:
            raise ValidationError('Tier name is required', field='tier')
        if min_total_spend_cents is None or min_total_spend_cents < 0:
            raise ValidationError('min_total_spend_cents cannot be negative', field='min_total_spend_cents')
        if multiplier_bps is None or multiplier_bps < 0:
            raise ValidationError('multiplier_bps cannot be negative', field='multiplier_bps')

        rule = TierRule.query.filter_by(tenant_id=tenant_id, tier=tier).first()
        if rule:
            rule.min_total_spend_cents = min_total_spend_cents
            rule.multiplier_bps = multiplier_bps
            rule.is_active = True
        else:
            rule = TierRule(
                tenant_id=tenant_id,
                tier=tier,
                min_total_spend_cents=min_total_spend_cents,
                multiplier_bps=multiplier_bps,
                is_active=True,
            )
            db.session.add(rule)

        self._bump_version(tenant_id)
        db.session.commit()

        logger.info(f'Tier rule set: tenant={tenant_id} tier={tier} min={min_total_spend_cents} x{multiplier_bps}bps')
        return rule

    def deactivate_rule(self, tenant_id: int, kind: str, rule_id: int):
        """Deactivate a 'cashback' or 'tier' rule."""
        model = {'cashback': CashbackRule, 'tier': TierRule}.get(kind)
        if model is None:
            raise ValidationError(f'Unknown rule kind: {kind}', field='kind')

        rule = model.query.filter_by(id=rule_id, tenant_id=tenant_id).first()
        if not rule:
            raise NotFoundError('Rule', rule_id)

        rule.is_active = False
        self._bump_version(tenant_id)
        db.session.commit()
        return rule


# Singleton instance
rule_service = RuleService()
