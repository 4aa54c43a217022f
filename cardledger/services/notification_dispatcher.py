"""
Notification Dispatcher.

Records one Notification row per message and attempts delivery through the
gateway for its channel. Runs strictly after the ledger commit that triggered
it, and never raises into the caller: a missing phone or email, an unknown
template, or a gateway failure ends up on the row as FAILED + error.

Failed rows are re-attempted by retry_sweep(), which runs under a job lease
and processes a bounded batch.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Dict, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, Tenant, Notification, NotificationStatus
from ..utils.exceptions import ExternalGatewayError
from .gateways import MessageGateway, build_gateways
from .job_lease import job_lease_service
from .notification_templates import NotificationTemplate, render

logger = logging.getLogger(__name__)

RETRY_SWEEP_LEASE = 'notification_retry_sweep'
CHANNELS = ('SMS', 'WHATSAPP', 'EMAIL')


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(gateways={'SMS': FakeGateway(), ...})
        dispatcher.enqueue(customer.id, NotificationTemplate.WELCOME, {'cardUid': 'C-1'})
    """

    def __init__(self, gateways: Dict[str, MessageGateway] = None, max_workers: int = 4):
        self._gateways = gateways
        self._max_workers = max_workers
        self._executor = None

    @property
    def gateways(self) -> Dict[str, MessageGateway]:
        if self._gateways is None:
            self._gateways = build_gateways(current_app.config)
        return self._gateways

    def set_gateways(self, gateways: Optional[Dict[str, MessageGateway]]) -> None:
        """Swap gateways (None rebuilds from config on next use)."""
        self._gateways = gateways

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix='notify'
            )
        return self._executor

    # ==================== Enqueue ====================

    def enqueue(self, customer_id: int, template, variables: dict = None,
                tenant_id: int = None, channel: str = None) -> Optional[Notification]:
        """
        Create a PENDING notification for a customer and attempt delivery.

        Returns the row, or None when nothing could be recorded (unknown
        customer, unknown template, storage failure).
        """
        try:
            template = NotificationTemplate(getattr(template, 'value', template))
        except ValueError:
            logger.error(f'[Notifications] Unknown template {template!r}, dropped')
            return None

        try:
            customer = db.session.get(Customer, customer_id) if customer_id else None
            if customer is None:
                logger.warning(f'[Notifications] Customer {customer_id} not found, {template.value} dropped')
                return None

            channel = self._channel(channel or customer.preferred_channel)
            recipient = customer.email if channel == 'EMAIL' else customer.phone

            notification = Notification(
                tenant_id=tenant_id or customer.tenant_id,
                customer_id=customer.id,
                channel=channel,
                template=template.value,
                payload=dict(variables or {}),
                recipient=recipient,
                status=NotificationStatus.PENDING.value,
            )
            db.session.add(notification)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f'[Notifications] Could not record {template.value} for customer {customer_id}')
            return None

        self._schedule_delivery(notification.id)
        return notification

    def enqueue_tenant_notice(self, tenant_id: int, template, variables: dict = None,
                              channel: str = None) -> Optional[Notification]:
        """Notification addressed to the tenant's contact (trial notices)."""
        try:
            template = NotificationTemplate(getattr(template, 'value', template))
        except ValueError:
            logger.error(f'[Notifications] Unknown template {template!r}, dropped')
            return None

        try:
            tenant = db.session.get(Tenant, tenant_id)
            if tenant is None:
                logger.warning(f'[Notifications] Tenant {tenant_id} not found, {template.value} dropped')
                return None

            if channel:
                channel = self._channel(channel)
            else:
                channel = 'EMAIL' if tenant.contact_email or not tenant.contact_phone else 'SMS'
            recipient = tenant.contact_email if channel == 'EMAIL' else tenant.contact_phone

            notification = Notification(
                tenant_id=tenant.id,
                customer_id=None,
                channel=channel,
                template=template.value,
                payload=dict(variables or {}),
                recipient=recipient,
                status=NotificationStatus.PENDING.value,
            )
            db.session.add(notification)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f'[Notifications] Could not record {template.value} for tenant {tenant_id}')
            return None

        self._schedule_delivery(notification.id)
        return notification

    def _channel(self, channel) -> str:
        channel = (getattr(channel, 'value', channel) or '').upper()
        if channel not in CHANNELS:
            return current_app.config.get('NOTIFICATION_DEFAULT_CHANNEL', 'SMS')
        return channel

    def _schedule_delivery(self, notification_id: int) -> None:
        if current_app.config.get('NOTIFICATION_ASYNC_DELIVERY') and not current_app.config.get('TESTING'):
            app = current_app._get_current_object()
            self._get_executor().submit(self._deliver_in_app, app, notification_id)
        else:
            self.deliver(notification_id)

    def _deliver_in_app(self, app, notification_id: int) -> None:
        with app.app_context():
            try:
                self.deliver(notification_id)
            except Exception:
                db.session.rollback()
                logger.exception(f'[Notifications] Background delivery of {notification_id} crashed')

    # ==================== Delivery ====================

    def deliver(self, notification_id: int) -> Optional[Notification]:
        """Attempt one delivery of a PENDING notification and record the outcome."""
        notification = db.session.get(Notification, notification_id)
        if notification is None or notification.status != NotificationStatus.PENDING.value:
            return notification

        notification.attempts = (notification.attempts or 0) + 1
        error = None

        if not notification.recipient:
            error = 'No email address on file' if notification.channel == 'EMAIL' else 'No phone number on file'
        else:
            try:
                message = render(notification.template, notification.channel, notification.payload)
                gateway = self.gateways.get(notification.channel)
                if gateway is None:
                    raise ExternalGatewayError('dispatcher', f'No gateway for channel {notification.channel}')
                gateway.send(notification.recipient, message)
            except ExternalGatewayError as e:
                error = e.message
            except Exception as e:
                logger.exception(f'[Notifications] Unexpected delivery error for {notification.id}')
                error = str(e) or e.__class__.__name__

        if error:
            notification.status = NotificationStatus.FAILED.value
            notification.error = error
            logger.warning(
                f'[Notifications] {notification.template} #{notification.id} via {notification.channel} '
                f'failed (attempt {notification.attempts}): {error}'
            )
        else:
            notification.status = NotificationStatus.SENT.value
            notification.error = None
            notification.sent_at = datetime.utcnow()
            logger.info(f'[Notifications] {notification.template} #{notification.id} sent via {notification.channel}')

        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f'[Notifications] Could not record delivery outcome for {notification_id}')
        return notification

    def _claim_failed(self, notification_id: int) -> bool:
        """FAILED -> PENDING, only for the caller that wins the update."""
        result = db.session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.status == NotificationStatus.FAILED.value)
            .values(status=NotificationStatus.PENDING.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def retry(self, notification_id: int, tenant_id: int = None) -> Optional[Notification]:
        """Manually re-attempt one FAILED notification."""
        notification = db.session.get(Notification, notification_id)
        if notification is None or (tenant_id and notification.tenant_id != tenant_id):
            return None
        if not self._claim_failed(notification_id):
            db.session.refresh(notification)
            return notification
        db.session.expire(notification)
        return self.deliver(notification_id)

    def retry_sweep(self, now: datetime = None) -> dict:
        """
        Re-attempt recent FAILED notifications.

        Single-flight across processes via a job lease. Only rows created
        within the lookback window and below the attempt cap are taken, at
        most NOTIFICATION_RETRY_BATCH_SIZE per run.
        """
        config = current_app.config
        now = now or datetime.utcnow()
        cutoff = now - timedelta(hours=config.get('NOTIFICATION_RETRY_LOOKBACK_HOURS', 24))
        batch_size = config.get('NOTIFICATION_RETRY_BATCH_SIZE', 10)
        max_attempts = config.get('NOTIFICATION_MAX_ATTEMPTS', 5)

        stats = {'skipped': False, 'claimed': 0, 'sent': 0, 'failed': 0}

        with job_lease_service.lease(RETRY_SWEEP_LEASE) as holder:
            if not holder:
                stats['skipped'] = True
                return stats

            candidate_ids = [
                row.id for row in (
                    db.session.query(Notification.id)
                    .filter(
                        Notification.status == NotificationStatus.FAILED.value,
                        Notification.created_at >= cutoff,
                        Notification.attempts < max_attempts,
                    )
                    .order_by(Notification.created_at.asc())
                    .limit(batch_size)
                    .all()
                )
            ]

            for notification_id in candidate_ids:
                if not self._claim_failed(notification_id):
                    continue
                stats['claimed'] += 1
                notification = self.deliver(notification_id)
                if notification is not None and notification.status == NotificationStatus.SENT.value:
                    stats['sent'] += 1
                else:
                    stats['failed'] += 1

        logger.info(f'[Notifications] Retry sweep: {stats}')
        return stats

    # ==================== Queries ====================

    def list_notifications(self, tenant_id: int, status: str = None, customer_id: int = None,
                           limit: int = 50, offset: int = 0):
        query = Notification.query.filter_by(tenant_id=tenant_id)
        if status:
            query = query.filter_by(status=status.upper())
        if customer_id:
            query = query.filter_by(customer_id=customer_id)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()


# Singleton instance; create_app may replace its gateways
notification_dispatcher = NotificationDispatcher()
