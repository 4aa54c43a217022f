"""
Tests for notification templates, dispatch and retry.
"""
import pytest
from datetime import datetime, timedelta


class TestTemplates:

    def test_every_template_has_text_for_every_channel(self):
        from cardledger.services.notification_templates import NotificationTemplate, TEMPLATES, render

        for template in NotificationTemplate:
            assert template in TEMPLATES
            for channel in ('SMS', 'WHATSAPP', 'EMAIL'):
                message = render(template, channel, {})
                assert message.body

    def test_email_has_subject(self):
        from cardledger.services.notification_templates import render

        message = render('CASHBACK_EARNED', 'EMAIL', {'amount': '5.00'})
        assert message.subject == 'You earned $5.00 cashback'

    def test_missing_variables_render_blank(self):
        from cardledger.services.notification_templates import render

        message = render('TIER_UPGRADED', 'SMS', {'newTier': 'GOLD'})
        assert message.body.startswith('Congratulations ! ')
        assert 'GOLD' in message.body

    def test_none_values_render_blank(self):
        from cardledger.services.notification_templates import render

        message = render('WELCOME', 'SMS', {'customerName': None, 'cardUid': 'C-9'})
        assert 'program, !' in message.body
        assert 'C-9' in message.body

    def test_unknown_channel(self):
        from cardledger.services.notification_templates import render

        with pytest.raises(ValueError):
            render('WELCOME', 'FAX', {})

    def test_format_cents(self):
        from cardledger.services.notification_templates import format_cents

        assert format_cents(1234) == '12.34'
        assert format_cents(5) == '0.05'
        assert format_cents(0) == '0.00'
        assert format_cents(None) == ''


class TestDispatch:

    def test_enqueue_sends_via_preferred_channel(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            notification = notification_dispatcher.enqueue(
                sample_customer.id, 'WELCOME', {'customerName': 'Ana', 'cardUid': 'C-1'},
            )

            assert notification.status == 'SENT'
            assert notification.attempts == 1
            assert notification.sent_at is not None
            assert notification.recipient == '+15550100'
            assert fake_gateways['SMS'].sent[0][0] == '+15550100'

    def test_channel_override(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            notification = notification_dispatcher.enqueue(
                sample_customer.id, 'WELCOME', {'cardUid': 'C-1'}, channel='WHATSAPP',
            )

            assert notification.channel == 'WHATSAPP'
            assert len(fake_gateways['WHATSAPP'].sent) == 1
            assert fake_gateways['SMS'].sent == []

    def test_missing_phone_recorded_as_failed(self, app, sample_tenant, fake_gateways):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Customer
            from cardledger.services.notification_dispatcher import notification_dispatcher

            customer = Customer(tenant_id=sample_tenant.id, name='No Phone', email='np@example.test',
                                preferred_channel='SMS')
            db.session.add(customer)
            db.session.commit()

            notification = notification_dispatcher.enqueue(customer.id, 'WELCOME', {})

            assert notification.status == 'FAILED'
            assert notification.error == 'No phone number on file'
            assert fake_gateways['SMS'].sent == []

    def test_missing_email_recorded_as_failed(self, app, sample_tenant):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Customer
            from cardledger.services.notification_dispatcher import notification_dispatcher

            customer = Customer(tenant_id=sample_tenant.id, phone='+15550111', preferred_channel='EMAIL')
            db.session.add(customer)
            db.session.commit()

            notification = notification_dispatcher.enqueue(customer.id, 'WELCOME', {})

            assert notification.status == 'FAILED'
            assert notification.error == 'No email address on file'

    def test_gateway_failure_recorded(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            fake_gateways['SMS'].fail = True

            notification = notification_dispatcher.enqueue(sample_customer.id, 'WELCOME', {})

            assert notification.status == 'FAILED'
            assert notification.attempts == 1
            assert 'simulated outage' in notification.error

    def test_unknown_customer_or_template_dropped(self, app, sample_customer):
        with app.app_context():
            from cardledger.models import Notification
            from cardledger.services.notification_dispatcher import notification_dispatcher

            assert notification_dispatcher.enqueue(99999, 'WELCOME', {}) is None
            assert notification_dispatcher.enqueue(sample_customer.id, 'NOT_A_TEMPLATE', {}) is None
            assert Notification.query.count() == 0

    def test_tenant_notice_goes_to_contact(self, app, sample_tenant, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            notification = notification_dispatcher.enqueue_tenant_notice(
                sample_tenant.id, 'TRIAL_EXPIRED', {'activationsUsed': '40'},
            )

            assert notification.customer_id is None
            assert notification.channel == 'EMAIL'
            recipient, message = fake_gateways['EMAIL'].sent[0]
            assert recipient == 'owner@pixel.test'
            assert '40' in message.body


class TestRetry:

    def _failed_notification(self, customer_id, fake_gateways):
        from cardledger.services.notification_dispatcher import notification_dispatcher

        fake_gateways['SMS'].fail = True
        notification = notification_dispatcher.enqueue(customer_id, 'WELCOME', {'cardUid': 'C-1'})
        fake_gateways['SMS'].fail = False
        return notification.id

    def test_manual_retry_succeeds(self, app, sample_customer, sample_tenant, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            notification_id = self._failed_notification(sample_customer.id, fake_gateways)

            notification = notification_dispatcher.retry(notification_id, tenant_id=sample_tenant.id)

            assert notification.status == 'SENT'
            assert notification.attempts == 2
            assert notification.error is None

    def test_retry_of_sent_notification_is_noop(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            sent = notification_dispatcher.enqueue(sample_customer.id, 'WELCOME', {})
            result = notification_dispatcher.retry(sent.id)

            assert result.status == 'SENT'
            assert result.attempts == 1
            assert len(fake_gateways['SMS'].sent) == 1

    def test_retry_other_tenant_returns_none(self, app, sample_customer, sample_tenant, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            notification_id = self._failed_notification(sample_customer.id, fake_gateways)
            assert notification_dispatcher.retry(notification_id, tenant_id=sample_tenant.id + 1) is None

    def test_sweep_retries_recent_failures(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.models import Notification
            from cardledger.services.notification_dispatcher import notification_dispatcher

            ids = [self._failed_notification(sample_customer.id, fake_gateways) for _ in range(3)]

            stats = notification_dispatcher.retry_sweep()

            assert stats == {'skipped': False, 'claimed': 3, 'sent': 3, 'failed': 0}
            assert all(Notification.query.get(i).status == 'SENT' for i in ids)

    def test_sweep_skips_old_and_exhausted(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Notification
            from cardledger.services.notification_dispatcher import notification_dispatcher

            old_id = self._failed_notification(sample_customer.id, fake_gateways)
            exhausted_id = self._failed_notification(sample_customer.id, fake_gateways)

            old = db.session.get(Notification, old_id)
            old.created_at = datetime.utcnow() - timedelta(hours=48)
            exhausted = db.session.get(Notification, exhausted_id)
            exhausted.attempts = app.config['NOTIFICATION_MAX_ATTEMPTS']
            db.session.commit()

            stats = notification_dispatcher.retry_sweep()

            assert stats['claimed'] == 0
            assert db.session.get(Notification, old_id).status == 'FAILED'
            assert db.session.get(Notification, exhausted_id).status == 'FAILED'

    def test_sweep_batch_size(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.services.notification_dispatcher import notification_dispatcher

            for _ in range(4):
                self._failed_notification(sample_customer.id, fake_gateways)

            app.config['NOTIFICATION_RETRY_BATCH_SIZE'] = 2
            stats = notification_dispatcher.retry_sweep()

            assert stats['claimed'] == 2

    def test_sweep_still_failing_counts_attempts(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Notification
            from cardledger.services.notification_dispatcher import notification_dispatcher

            notification_id = self._failed_notification(sample_customer.id, fake_gateways)
            fake_gateways['SMS'].fail = True

            stats = notification_dispatcher.retry_sweep()

            assert stats['failed'] == 1
            notification = db.session.get(Notification, notification_id)
            assert notification.status == 'FAILED'
            assert notification.attempts == 2

    def test_sweep_skipped_while_lease_held(self, app, sample_customer, fake_gateways):
        with app.app_context():
            from cardledger.services.job_lease import job_lease_service
            from cardledger.services.notification_dispatcher import notification_dispatcher, RETRY_SWEEP_LEASE

            self._failed_notification(sample_customer.id, fake_gateways)
            holder = job_lease_service.acquire(RETRY_SWEEP_LEASE)
            assert holder is not None

            stats = notification_dispatcher.retry_sweep()
            assert stats['skipped'] is True
            assert stats['claimed'] == 0

            job_lease_service.release(RETRY_SWEEP_LEASE, holder)
            assert notification_dispatcher.retry_sweep()['claimed'] == 1


class TestJobLease:

    def test_second_acquire_fails_until_release(self, app):
        with app.app_context():
            from cardledger.services.job_lease import job_lease_service

            first = job_lease_service.acquire('nightly')
            assert first is not None
            assert job_lease_service.acquire('nightly') is None

            job_lease_service.release('nightly', first)
            assert job_lease_service.acquire('nightly') is not None

    def test_expired_lease_can_be_taken_over(self, app):
        with app.app_context():
            from cardledger.services.job_lease import job_lease_service

            now = datetime.utcnow()
            assert job_lease_service.acquire('nightly', ttl_seconds=60, now=now) is not None
            assert job_lease_service.acquire('nightly', now=now + timedelta(seconds=30)) is None
            assert job_lease_service.acquire('nightly', now=now + timedelta(seconds=61)) is not None


class TestGateways:

    def test_twilio_sms_posts_message(self):
        from unittest.mock import patch, MagicMock
        from cardledger.services.gateways import TwilioGateway
        from cardledger.services.notification_templates import RenderedMessage

        gateway = TwilioGateway('AC123', 'token', '+15550000')
        response = MagicMock(status_code=201)
        response.json.return_value = {'sid': 'SM1'}

        with patch('cardledger.services.gateways.requests.post', return_value=response) as mock_post:
            assert gateway.send('+15550100', RenderedMessage(body='hello')) == 'SM1'

        args, kwargs = mock_post.call_args
        assert args[0] == 'https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json'
        assert kwargs['data'] == {'From': '+15550000', 'To': '+15550100', 'Body': 'hello'}
        assert kwargs['auth'] == ('AC123', 'token')

    def test_twilio_whatsapp_prefixes_addresses(self):
        from unittest.mock import patch, MagicMock
        from cardledger.services.gateways import TwilioGateway
        from cardledger.services.notification_templates import RenderedMessage

        gateway = TwilioGateway('AC123', 'token', '+15550000', whatsapp=True)
        response = MagicMock(status_code=201)
        response.json.return_value = {'sid': 'SM2'}

        with patch('cardledger.services.gateways.requests.post', return_value=response) as mock_post:
            gateway.send('+15550100', RenderedMessage(body='hi'))

        data = mock_post.call_args.kwargs['data']
        assert data['From'] == 'whatsapp:+15550000'
        assert data['To'] == 'whatsapp:+15550100'

    def test_twilio_error_status_raises(self):
        from unittest.mock import patch, MagicMock
        from cardledger.services.gateways import TwilioGateway
        from cardledger.services.notification_templates import RenderedMessage
        from cardledger.utils.exceptions import ExternalGatewayError

        gateway = TwilioGateway('AC123', 'token', '+15550000')
        response = MagicMock(status_code=400)
        response.json.return_value = {'message': 'Invalid To number'}

        with patch('cardledger.services.gateways.requests.post', return_value=response):
            with pytest.raises(ExternalGatewayError) as exc_info:
                gateway.send('bad', RenderedMessage(body='x'))

        assert 'Invalid To number' in exc_info.value.message

    def test_twilio_timeout_raises(self):
        import requests
        from unittest.mock import patch
        from cardledger.services.gateways import TwilioGateway
        from cardledger.services.notification_templates import RenderedMessage
        from cardledger.utils.exceptions import ExternalGatewayError

        gateway = TwilioGateway('AC123', 'token', '+15550000', timeout=3)

        with patch('cardledger.services.gateways.requests.post', side_effect=requests.exceptions.Timeout()):
            with pytest.raises(ExternalGatewayError) as exc_info:
                gateway.send('+15550100', RenderedMessage(body='x'))

        assert 'timed out after 3s' in exc_info.value.message

    def test_sendgrid_sends_mail(self):
        from unittest.mock import patch, MagicMock
        from cardledger.services.gateways import SendGridEmailGateway
        from cardledger.services.notification_templates import RenderedMessage

        gateway = SendGridEmailGateway('SG.key', 'noreply@cardledger.test', 'Cardledger')
        client = MagicMock()
        client.send.return_value = MagicMock(status_code=202, headers={'X-Message-Id': 'msg-1'})

        with patch('cardledger.services.gateways.SendGridAPIClient', return_value=client):
            message_id = gateway.send('ana@example.test', RenderedMessage(body='Body', subject='Subject'))

        assert message_id == 'msg-1'
        client.send.assert_called_once()

    def test_unconfigured_gateways_log_only_outside_production(self):
        from cardledger.services.gateways import build_gateways, LogOnlyGateway, TwilioGateway

        dev = build_gateways({}, production=False)
        assert all(isinstance(g, LogOnlyGateway) for g in dev.values())

        prod = build_gateways({}, production=True)
        assert isinstance(prod['SMS'], TwilioGateway)
