"""
Trial Gate.

Tenants without an ACTIVE subscription get a fixed number of free card
activations. The check and the increment are one conditional UPDATE:

    UPDATE tenants SET free_trial_activations = free_trial_activations + 1
    WHERE id = :id AND free_trial_activations < free_trial_limit
      AND subscription_status != 'ACTIVE'

so two concurrent activations can never both take the last slot. The
expiry flag and the "remaining <= N" warning marker are flipped the same
way, which makes each notice fire once per trial cycle.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from flask import current_app
from sqlalchemy import update, select, or_

from ..extensions import db
from ..models import Tenant, SubscriptionStatus
from ..utils.exceptions import TenantNotFoundError
from .notification_templates import NotificationTemplate

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass
class ActivationResult:
    allowed: bool
    activations_used: int
    activations_remaining: int
    trial_just_expired: bool = False
    warning_remaining: Optional[int] = None

    @property
    def should_warn(self) -> bool:
        return self.warning_remaining is not None

    def to_dict(self):
        return asdict(self)


class TrialGateService:
    """Free-trial activation accounting per tenant."""

    def __init__(self, dispatcher=None):
        self._dispatcher = dispatcher

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            from .notification_dispatcher import notification_dispatcher
            self._dispatcher = notification_dispatcher
        return self._dispatcher

    def track_card_activation(self, tenant_id: int, commit: bool = True) -> ActivationResult:
        """
        Consume one activation slot if one is available.

        With commit=False the caller owns the transaction (card activation
        runs the slot and the card update together) and must call
        dispatch_trial_notices() after its own commit.
        """
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)

        if tenant.subscription_status == SubscriptionStatus.ACTIVE.value:
            return ActivationResult(True, tenant.free_trial_activations, UNLIMITED)

        result = db.session.execute(
            update(Tenant)
            .where(
                Tenant.id == tenant_id,
                Tenant.free_trial_activations < Tenant.free_trial_limit,
                Tenant.subscription_status != SubscriptionStatus.ACTIVE.value,
            )
            .values(free_trial_activations=Tenant.free_trial_activations + 1)
            .execution_options(synchronize_session=False)
        )

        used, limit, status = db.session.execute(
            select(Tenant.free_trial_activations, Tenant.free_trial_limit, Tenant.subscription_status)
            .where(Tenant.id == tenant_id)
        ).one()

        if result.rowcount != 1:
            if status == SubscriptionStatus.ACTIVE.value:
                # Subscribed between our read and the update
                return ActivationResult(True, used, UNLIMITED)
            logger.info(f'[Trial] Tenant {tenant_id} denied activation: {used}/{limit} used')
            if commit:
                db.session.commit()
            return ActivationResult(False, used, max(0, limit - used))

        remaining = max(0, limit - used)
        activation = ActivationResult(True, used, remaining)

        if remaining == 0:
            flipped = db.session.execute(
                update(Tenant)
                .where(Tenant.id == tenant_id, Tenant.trial_expired_notified.is_(False))
                .values(trial_expired_notified=True)
                .execution_options(synchronize_session=False)
            )
            activation.trial_just_expired = flipped.rowcount == 1

        threshold = current_app.config.get('TRIAL_WARNING_THRESHOLD', 5)
        if 0 < remaining <= threshold:
            marked = db.session.execute(
                update(Tenant)
                .where(
                    Tenant.id == tenant_id,
                    or_(
                        Tenant.trial_last_warned_remaining.is_(None),
                        Tenant.trial_last_warned_remaining > remaining,
                    ),
                )
                .values(trial_last_warned_remaining=remaining)
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount == 1:
                activation.warning_remaining = remaining

        if commit:
            db.session.commit()
            self.dispatch_trial_notices(tenant_id, activation)

        logger.info(f'[Trial] Tenant {tenant_id} activation {used}/{limit}')
        return activation

    def dispatch_trial_notices(self, tenant_id: int, activation: ActivationResult) -> None:
        """Send TRIAL_EXPIRED / TRIAL_EXPIRING after the slot has been committed."""
        try:
            if activation.trial_just_expired:
                self.dispatcher.enqueue_tenant_notice(
                    tenant_id,
                    NotificationTemplate.TRIAL_EXPIRED,
                    {'activationsUsed': str(activation.activations_used)},
                )
            elif activation.should_warn:
                self.dispatcher.enqueue_tenant_notice(
                    tenant_id,
                    NotificationTemplate.TRIAL_EXPIRING,
                    {
                        'activationsRemaining': str(activation.warning_remaining),
                        'activationsUsed': str(activation.activations_used),
                    },
                )
        except Exception as e:
            logger.warning(f'[Trial] Failed to send trial notice for tenant {tenant_id} (non-blocking): {e}')

    def get_trial_status(self, tenant_id: int) -> dict:
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)

        used = tenant.free_trial_activations
        limit = tenant.free_trial_limit
        status = tenant.subscription_status
        return {
            'activations_used': used,
            'activations_remaining': max(0, limit - used),
            'trial_limit': limit,
            'is_trial_active': status in (SubscriptionStatus.TRIALING.value, SubscriptionStatus.NONE.value),
            'subscription_required': status != SubscriptionStatus.ACTIVE.value and used >= limit,
            'subscription_status': status,
            'trial_expired_notified': tenant.trial_expired_notified,
        }

    def can_activate_cards(self, tenant_id: int) -> bool:
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            return False
        if tenant.subscription_status == SubscriptionStatus.ACTIVE.value:
            return True
        return tenant.free_trial_activations < tenant.free_trial_limit

    def reset_trial(self, tenant_id: int) -> dict:
        """Admin action: start a fresh trial cycle."""
        result = db.session.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(
                free_trial_activations=0,
                trial_expired_notified=False,
                trial_last_warned_remaining=None,
                subscription_status=SubscriptionStatus.TRIALING.value,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise TenantNotFoundError(tenant_id)
        db.session.commit()

        logger.info(f'[Trial] Trial reset for tenant {tenant_id}')
        return self.get_trial_status(tenant_id)


# Singleton instance
trial_gate = TrialGateService()
