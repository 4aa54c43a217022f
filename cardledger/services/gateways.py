"""
Outbound messaging gateways.

Each gateway sends one rendered message to one address and either returns
the provider's message id or raises ExternalGatewayError. The notification
dispatcher receives gateways by channel, so tests pass fakes instead of
patching network clients.

- SMS / WhatsApp: Twilio Programmable Messaging REST API (via requests)
- Email: SendGrid
- LogOnlyGateway: development stand-in when credentials are not configured
"""
import logging
import uuid
from typing import Dict, Optional

import requests
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

from ..utils.exceptions import ExternalGatewayError
from .notification_templates import RenderedMessage

logger = logging.getLogger(__name__)


class MessageGateway:
    """Interface: send(recipient, message) -> provider message id."""

    name = 'gateway'

    def send(self, recipient: str, message: RenderedMessage) -> str:
        raise NotImplementedError


class TwilioGateway(MessageGateway):
    """
    Twilio SMS and WhatsApp sender.

    API Documentation: https://www.twilio.com/docs/messaging/api/message-resource
    """

    BASE_URL = 'https://api.twilio.com/2010-04-01'

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 whatsapp: bool = False, timeout: int = 10):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.whatsapp = whatsapp
        self.timeout = timeout
        self.name = 'twilio-whatsapp' if whatsapp else 'twilio-sms'

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _address(self, number: str) -> str:
        return f'whatsapp:{number}' if self.whatsapp else number

    def send(self, recipient: str, message: RenderedMessage) -> str:
        if not self.is_configured():
            raise ExternalGatewayError(self.name, 'Twilio not configured')

        try:
            response = requests.post(
                f'{self.BASE_URL}/Accounts/{self.account_sid}/Messages.json',
                data={
                    'From': self._address(self.from_number),
                    'To': self._address(recipient),
                    'Body': message.body,
                },
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise ExternalGatewayError(self.name, f'timed out after {self.timeout}s', e)
        except requests.exceptions.RequestException as e:
            raise ExternalGatewayError(self.name, str(e), e)

        if response.status_code not in (200, 201):
            detail = ''
            try:
                detail = response.json().get('message', '')
            except ValueError:
                pass
            raise ExternalGatewayError(self.name, f'API error {response.status_code} {detail}'.strip())

        return response.json().get('sid', '')


class SendGridEmailGateway(MessageGateway):
    """Email sender backed by SendGrid."""

    name = 'sendgrid'

    def __init__(self, api_key: str, from_email: str, from_name: str = None):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name

    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    def send(self, recipient: str, message: RenderedMessage) -> str:
        if not self.is_configured():
            raise ExternalGatewayError(self.name, 'SendGrid not configured')

        mail = Mail(
            from_email=Email(email=self.from_email, name=self.from_name),
            to_emails=To(email=recipient),
            subject=message.subject or '',
            plain_text_content=Content('text/plain', message.body),
        )

        try:
            response = SendGridAPIClient(api_key=self.api_key).send(mail)
        except Exception as e:
            raise ExternalGatewayError(self.name, str(e), e)

        if response.status_code not in (200, 202):
            raise ExternalGatewayError(self.name, f'Status code: {response.status_code}')

        headers = getattr(response, 'headers', None) or {}
        return headers.get('X-Message-Id', '')


class LogOnlyGateway(MessageGateway):
    """Logs instead of sending. Used outside production when a provider is not configured."""

    def __init__(self, channel: str):
        self.channel = channel
        self.name = f'log-{channel.lower()}'

    def send(self, recipient: str, message: RenderedMessage) -> str:
        logger.info('[Notifications] MOCK %s message (%d chars)', self.channel, len(message.body))
        return f'mock-{uuid.uuid4().hex[:12]}'


def build_gateways(config, production: Optional[bool] = None) -> Dict[str, MessageGateway]:
    """
    Build channel -> gateway from app config.

    Unconfigured providers fall back to LogOnlyGateway except in production,
    where the real gateway is kept and every send fails as 'not configured'.
    """
    if production is None:
        production = not config.get('DEBUG') and not config.get('TESTING')

    timeout = config.get('GATEWAY_TIMEOUT_SECONDS', 10)
    sms = TwilioGateway(
        config.get('TWILIO_ACCOUNT_SID'),
        config.get('TWILIO_AUTH_TOKEN'),
        config.get('TWILIO_FROM_NUMBER'),
        whatsapp=False,
        timeout=timeout,
    )
    whatsapp = TwilioGateway(
        config.get('TWILIO_ACCOUNT_SID'),
        config.get('TWILIO_AUTH_TOKEN'),
        config.get('TWILIO_FROM_NUMBER'),
        whatsapp=True,
        timeout=timeout,
    )
    email = SendGridEmailGateway(
        config.get('SENDGRID_API_KEY'),
        config.get('SENDGRID_FROM_EMAIL'),
        config.get('SENDGRID_FROM_NAME'),
    )

    gateways = {'SMS': sms, 'WHATSAPP': whatsapp, 'EMAIL': email}
    if not production:
        for channel, gateway in list(gateways.items()):
            if not gateway.is_configured():
                gateways[channel] = LogOnlyGateway(channel)
    return gateways
