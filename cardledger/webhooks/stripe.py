"""
Stripe webhook endpoint.
Verifies the signature, then hands the event to payment reconciliation.
"""
import json
import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from ..services.payment_reconciliation import PaymentEvent, payment_reconciliation
from ..utils.errors import error_response, ErrorCode
from ..utils.exceptions import LedgerError, MalformedWebhookError, PersistenceError

logger = logging.getLogger(__name__)

stripe_webhook_bp = Blueprint('stripe_webhook', __name__)


@stripe_webhook_bp.route('', methods=['POST'])
def handle_stripe_webhook():
    """
    Handle incoming Stripe webhook events.

    Stripe sends events for:
    - payment_intent.succeeded / payment_failed / canceled
    - checkout.session.completed / expired
    - invoice.paid / invoice.payment_failed
    - customer.subscription.created / updated / deleted

    Redelivered events are acknowledged with 200. Storage failures return
    500 so Stripe retries later.
    """
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')
    webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')

    if not webhook_secret:
        return error_response('Webhook secret not configured', ErrorCode.CONFIGURATION_ERROR, 500)

    if not sig_header:
        return error_response('Missing Stripe-Signature header', ErrorCode.INVALID_SIGNATURE, 400, log_error=False)

    try:
        stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f'[Stripe Webhook] Signature verification failed: {e}')
        return error_response('Webhook signature verification failed', ErrorCode.INVALID_SIGNATURE, 400, log_error=False)

    try:
        event = PaymentEvent.from_stripe(json.loads(payload))
    except (ValueError, MalformedWebhookError) as e:
        # Retrying a malformed payload never helps; acknowledge and drop it.
        logger.error(f'[Stripe Webhook] Malformed event dropped: {e}')
        return jsonify({'received': True, 'handled': False, 'error': 'Malformed event'}), 200

    try:
        result = payment_reconciliation.handle_event(event)
    except PersistenceError as e:
        logger.error(f'[Stripe Webhook] {event.event_type} {event.event_id} failed, requesting retry: {e.message}')
        return error_response('Temporary failure, please retry', ErrorCode.INTERNAL_ERROR, 500, log_error=False)
    except LedgerError as e:
        logger.warning(f'[Stripe Webhook] {event.event_type} {event.event_id} rejected: {e.message}')
        return jsonify({'received': True, 'handled': False, 'error': e.message}), 200

    logger.info(f'[Stripe Webhook] {event.event_type} {event.event_id}: {result}')
    return jsonify({'received': True, **result}), 200
