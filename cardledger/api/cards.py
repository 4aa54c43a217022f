"""
Card lifecycle endpoints.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_tenant
from ..services.card_service import card_service

cards_bp = Blueprint('cards', __name__)


@cards_bp.route('/<int:card_id>', methods=['GET'])
@require_tenant
def get_card(card_id):
    card = card_service.get_card(g.tenant_id, card_id)
    return jsonify({'card': card.to_dict()})


@cards_bp.route('/<int:card_id>/activate', methods=['POST'])
@require_tenant
def activate_card(card_id):
    """
    Activate an unassigned card. Consumes a free-trial activation unless the
    tenant is subscribed.

    Request body (existing customer):
    {"customer_id": 5, "store_id": 3}

    Request body (new customer):
    {"customer": {"name": "Ana", "phone": "+15550100", "preferred_channel": "SMS"}, "store_id": 3}
    """
    data = request.get_json(silent=True) or {}
    card = card_service.activate_card(
        g.tenant_id,
        card_id,
        store_id=data.get('store_id'),
        customer_id=data.get('customer_id'),
        customer_data=data.get('customer'),
    )
    return jsonify({'success': True, 'card': card.to_dict()}), 200


@cards_bp.route('/<int:card_id>/block', methods=['POST'])
@require_tenant
def toggle_block(card_id):
    """Block an active card, or unblock a blocked one."""
    card = card_service.toggle_block(g.tenant_id, card_id)
    return jsonify({'success': True, 'card': card.to_dict()})


@cards_bp.route('/<int:card_id>/tier-progress', methods=['GET'])
@require_tenant
def tier_progress(card_id):
    return jsonify(card_service.get_tier_progress(g.tenant_id, card_id))
