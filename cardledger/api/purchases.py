"""
Purchase / top-up endpoints backed by payment reconciliation.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_tenant
from ..services.payment_reconciliation import payment_reconciliation
from ..utils.errors import bad_request, ErrorCode

purchases_bp = Blueprint('purchases', __name__)


@purchases_bp.route('', methods=['POST'])
@require_tenant
def create_purchase():
    """
    Create a purchase or top-up.

    Request body:
    {
        "card_id": 12,
        "amount_cents": 2500,
        "payment_method": "QR_PAYMENT",   // CASH, QR_PAYMENT, CARD
        "kind": "PURCHASE",               // PURCHASE (earns cashback) or TOP_UP
        "category": "PURCHASE",
        "store_id": 3,
        "description": "Screen repair"
    }

    CASH is credited immediately; other methods return a payment link.
    """
    data = request.get_json(silent=True) or {}
    for field in ('card_id', 'amount_cents', 'payment_method'):
        if data.get(field) in (None, ''):
            return bad_request(f'Missing required field: {field}', ErrorCode.MISSING_FIELD)

    purchase = payment_reconciliation.create_purchase(
        tenant_id=g.tenant_id,
        card_id=data['card_id'],
        amount_cents=data['amount_cents'],
        payment_method=str(data['payment_method']).upper(),
        kind=str(data.get('kind') or 'PURCHASE').upper(),
        category=str(data.get('category') or 'PURCHASE').upper(),
        store_id=data.get('store_id'),
        actor_id=g.actor_id,
        description=data.get('description'),
    )
    return jsonify({'success': True, 'purchase': purchase.to_dict()}), 201


@purchases_bp.route('/<int:purchase_id>/confirm', methods=['POST'])
@require_tenant
def confirm_purchase(purchase_id):
    """Cashier confirms payment was received; the card is credited."""
    purchase = payment_reconciliation.confirm_payment(g.tenant_id, purchase_id, actor_id=g.actor_id)
    return jsonify({'success': True, 'purchase': purchase.to_dict()})
