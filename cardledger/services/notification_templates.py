"""
Notification template catalog.

Every NotificationTemplate member must have SMS, WhatsApp and email text;
the module refuses to import otherwise. Placeholders use str.format names
({customerName}, {amount}, ...) and any variable the caller does not supply
renders as an empty string.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Optional


class NotificationTemplate(str, Enum):
    CASHBACK_EARNED = 'CASHBACK_EARNED'
    CASHBACK_REDEEMED = 'CASHBACK_REDEEMED'
    TIER_UPGRADED = 'TIER_UPGRADED'
    WELCOME = 'WELCOME'
    TRIAL_EXPIRING = 'TRIAL_EXPIRING'
    TRIAL_EXPIRED = 'TRIAL_EXPIRED'
    FUNDS_ADDED = 'FUNDS_ADDED'
    BALANCE_UPDATE = 'BALANCE_UPDATE'


@dataclass(frozen=True)
class TemplateText:
    sms: str
    whatsapp: str
    email_subject: str
    email_body: str


@dataclass(frozen=True)
class RenderedMessage:
    body: str
    subject: Optional[str] = None


TEMPLATES: Dict[NotificationTemplate, TemplateText] = {
    NotificationTemplate.CASHBACK_EARNED: TemplateText(
        sms=(
            'Hi {customerName}! You earned ${amount} cashback at {storeName}. '
            'New balance: ${balance}. Thank you for your loyalty!'
        ),
        whatsapp=(
            'Great news, {customerName}!\n\n'
            'You just earned ${amount} cashback at {storeName}.\n\n'
            'Your new balance is ${balance}.\n\n'
            'Keep shopping to unlock more rewards!'
        ),
        email_subject='You earned ${amount} cashback',
        email_body=(
            'Hi {customerName},\n\n'
            'You earned ${amount} cashback on your ${transactionAmount} purchase at {storeName}.\n'
            'Your card balance is now ${balance}.\n'
        ),
    ),
    NotificationTemplate.CASHBACK_REDEEMED: TemplateText(
        sms=(
            'Hi {customerName}! You redeemed ${amount} at {storeName}. '
            'Remaining balance: ${balance}. Thanks for choosing us!'
        ),
        whatsapp=(
            'Transaction successful!\n\n'
            "Hi {customerName}, you've redeemed ${amount} at {storeName}.\n\n"
            'Remaining balance: ${balance}.'
        ),
        email_subject='You redeemed ${amount}',
        email_body=(
            'Hi {customerName},\n\n'
            'You redeemed ${amount} at {storeName}.\n'
            'Remaining balance: ${balance}.\n'
        ),
    ),
    NotificationTemplate.TIER_UPGRADED: TemplateText(
        sms=(
            "Congratulations {customerName}! You've been upgraded to {newTier} status. "
            'Enjoy higher cashback rates!'
        ),
        whatsapp=(
            'Tier Upgrade!\n\n'
            'Congratulations {customerName}!\n\n'
            "You've been upgraded to {newTier} status and now earn higher cashback "
            'on every purchase.'
        ),
        email_subject='Welcome to {newTier}',
        email_body=(
            'Hi {customerName},\n\n'
            "You've been upgraded to {newTier}. Your cashback rate goes up from your next purchase.\n"
        ),
    ),
    NotificationTemplate.WELCOME: TemplateText(
        sms=(
            'Welcome to our loyalty program, {customerName}! Your card {cardUid} is now active. '
            'Start earning cashback today!'
        ),
        whatsapp=(
            'Welcome to our loyalty program!\n\n'
            'Hi {customerName}, your card {cardUid} is now active.\n\n'
            'Start earning cashback on every purchase.'
        ),
        email_subject='Your card is active',
        email_body=(
            'Hi {customerName},\n\n'
            'Your loyalty card {cardUid} is now active at {storeName}. '
            'Every purchase earns cashback from today.\n'
        ),
    ),
    NotificationTemplate.TRIAL_EXPIRING: TemplateText(
        sms=(
            'Your free trial expires soon! You have {activationsRemaining} card activations left. '
            'Upgrade your plan to continue.'
        ),
        whatsapp=(
            'Trial Expiring Soon!\n\n'
            'You have {activationsRemaining} card activations remaining in your free trial.\n\n'
            'Upgrade your plan to keep activating cards without interruption.'
        ),
        email_subject='{activationsRemaining} free activations left',
        email_body=(
            'You have used {activationsUsed} of your free card activations. '
            '{activationsRemaining} remain.\n\n'
            'Upgrade your plan to keep activating cards without interruption.\n'
        ),
    ),
    NotificationTemplate.TRIAL_EXPIRED: TemplateText(
        sms=(
            'Your free trial has ended after {activationsUsed} activations. '
            'Upgrade your plan to continue using the system.'
        ),
        whatsapp=(
            'Free Trial Ended\n\n'
            "You've used all {activationsUsed} free card activations.\n\n"
            'Upgrade your plan to continue activating cards.'
        ),
        email_subject='Your free trial has ended',
        email_body=(
            "You've used all {activationsUsed} free card activations.\n\n"
            'Existing cards keep working. Upgrade your plan to activate new ones.\n'
        ),
    ),
    NotificationTemplate.FUNDS_ADDED: TemplateText(
        sms=(
            'Hi {customerName}! ${amount} was added to your card at {storeName}. '
            'New balance: ${balance}.'
        ),
        whatsapp=(
            'Funds added!\n\n'
            'Hi {customerName}, ${amount} was added to your card at {storeName}.\n\n'
            'New balance: ${balance}.'
        ),
        email_subject='${amount} added to your card',
        email_body=(
            'Hi {customerName},\n\n'
            '${amount} was added to your card at {storeName}.\n'
            'New balance: ${balance}.\n'
        ),
    ),
    NotificationTemplate.BALANCE_UPDATE: TemplateText(
        sms='Hi {customerName}! Your card balance was updated. New balance: ${balance}.',
        whatsapp=(
            'Balance update\n\n'
            'Hi {customerName}, your card balance was updated.\n\n'
            'New balance: ${balance}.'
        ),
        email_subject='Your card balance was updated',
        email_body=(
            'Hi {customerName},\n\n'
            'Your card balance was adjusted by the store. New balance: ${balance}.\n'
        ),
    ),
}

_missing = set(NotificationTemplate) - set(TEMPLATES)
if _missing:
    raise RuntimeError(f'Notification templates without text: {sorted(t.value for t in _missing)}')


class _BlankMissing(dict):
    def __missing__(self, key):
        return ''


def format_cents(cents) -> str:
    """1234 -> '12.34'"""
    if cents is None:
        return ''
    value = (Decimal(int(cents)) / Decimal(100)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return f'{value:.2f}'


def render(template, channel: str, variables: dict = None) -> RenderedMessage:
    """Render template text for a channel ('SMS', 'WHATSAPP' or 'EMAIL')."""
    text = TEMPLATES[NotificationTemplate(template)]
    values = _BlankMissing({k: '' if v is None else v for k, v in (variables or {}).items()})

    channel = getattr(channel, 'value', channel)
    if channel == 'EMAIL':
        return RenderedMessage(
            body=text.email_body.format_map(values),
            subject=text.email_subject.format_map(values),
        )
    if channel == 'WHATSAPP':
        return RenderedMessage(body=text.whatsapp.format_map(values))
    if channel == 'SMS':
        return RenderedMessage(body=text.sms.format_map(values))
    raise ValueError(f'Unknown notification channel: {channel}')
