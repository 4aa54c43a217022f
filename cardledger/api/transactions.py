"""
Ledger transaction endpoints (cashier and admin actions).

All balance changes go through BalanceLedger.apply_transaction; ledger
errors propagate to the app-level LedgerError handler.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_tenant, require_role, ActorRole
from ..models import TransactionType
from ..services.balance_ledger import balance_ledger
from ..utils.errors import bad_request, ErrorCode

transactions_bp = Blueprint('transactions', __name__)


def _transaction_response(txn, status_code=201):
    return jsonify({
        'success': True,
        'transaction': txn.to_dict(),
        'balance_cents': txn.after_balance_cents,
    }), status_code


@transactions_bp.route('/earn', methods=['POST'])
@require_tenant
def earn():
    """
    Record a purchase and credit cashback.

    Request body:
    {
        "card_id": 12,
        "amount_cents": 10000,
        "category": "PURCHASE",   // PURCHASE, REPAIR, OTHER
        "store_id": 3,
        "note": "Receipt #991"
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('card_id'):
        return bad_request('card_id is required', ErrorCode.MISSING_FIELD)

    txn = balance_ledger.apply_transaction(
        card_id=data['card_id'],
        txn_type=TransactionType.EARN,
        amount_cents=data.get('amount_cents'),
        category=data.get('category') or 'PURCHASE',
        store_id=data.get('store_id'),
        actor_id=g.actor_id,
        note=data.get('note'),
        tenant_id=g.tenant_id,
    )
    return _transaction_response(txn)


@transactions_bp.route('/redeem', methods=['POST'])
@require_tenant
def redeem():
    """Spend card balance. Body: card_id, amount_cents, store_id?, note?"""
    data = request.get_json(silent=True) or {}
    if not data.get('card_id'):
        return bad_request('card_id is required', ErrorCode.MISSING_FIELD)

    txn = balance_ledger.apply_transaction(
        card_id=data['card_id'],
        txn_type=TransactionType.REDEEM,
        amount_cents=data.get('amount_cents'),
        category=data.get('category') or 'PURCHASE',
        store_id=data.get('store_id'),
        actor_id=g.actor_id,
        note=data.get('note'),
        tenant_id=g.tenant_id,
    )
    return _transaction_response(txn)


@transactions_bp.route('/add-funds', methods=['POST'])
@require_tenant
def add_funds():
    """Top up a card paid at the counter. Body: card_id, amount_cents, method?, store_id?"""
    data = request.get_json(silent=True) or {}
    if not data.get('card_id'):
        return bad_request('card_id is required', ErrorCode.MISSING_FIELD)

    method = (data.get('method') or 'CASH').upper()
    txn = balance_ledger.apply_transaction(
        card_id=data['card_id'],
        txn_type=TransactionType.ADD_FUNDS,
        amount_cents=data.get('amount_cents'),
        category='OTHER',
        store_id=data.get('store_id'),
        actor_id=g.actor_id,
        note=data.get('note') or f'Store credit added via {method}',
        tenant_id=g.tenant_id,
    )
    return _transaction_response(txn)


@transactions_bp.route('/adjust', methods=['POST'])
@require_tenant
@require_role(ActorRole.TENANT_ADMIN)
def adjust():
    """
    Admin balance correction.

    Request body:
    {
        "card_id": 12,
        "delta_cents": -250,
        "note": "Refund reversal"
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('card_id'):
        return bad_request('card_id is required', ErrorCode.MISSING_FIELD)
    if not data.get('note'):
        return bad_request('A note is required for adjustments', ErrorCode.MISSING_FIELD)

    txn = balance_ledger.apply_transaction(
        card_id=data['card_id'],
        txn_type=TransactionType.ADJUST,
        amount_cents=data.get('delta_cents'),
        category=data.get('category') or 'OTHER',
        actor_id=g.actor_id,
        note=data['note'],
        tenant_id=g.tenant_id,
    )
    return _transaction_response(txn)


@transactions_bp.route('/card/<int:card_id>', methods=['GET'])
@require_tenant
def list_card_transactions(card_id):
    """Transactions for a card, newest first. Query params: limit (max 200), offset."""
    limit = min(request.args.get('limit', 50, type=int), 200)
    offset = request.args.get('offset', 0, type=int)

    transactions = balance_ledger.get_card_transactions(card_id, tenant_id=g.tenant_id, limit=limit, offset=offset)
    return jsonify({
        'transactions': [t.to_dict() for t in transactions],
        'limit': limit,
        'offset': offset,
    })
