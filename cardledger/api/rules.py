"""
Cashback and tier rule administration.
"""
from datetime import datetime
from flask import Blueprint, request, jsonify, g

from ..middleware import require_tenant
from ..services.rule_service import rule_service
from ..utils.errors import bad_request, ErrorCode

rules_bp = Blueprint('rules', __name__)


def _parse_datetime(value):
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)


@rules_bp.route('', methods=['GET'])
@require_tenant
def get_rules():
    rule_set = rule_service.get_rule_set(g.tenant_id)
    return jsonify({
        'version': rule_set.version,
        'cashback_rules': [
            {'id': r.id, 'category': r.category, 'base_rate_bps': r.base_rate_bps,
             'starts_at': r.starts_at.isoformat() if r.starts_at else None,
             'ends_at': r.ends_at.isoformat() if r.ends_at else None}
            for r in rule_set.cashback_rules
        ],
        'tier_rules': [
            {'id': r.id, 'tier': r.tier, 'min_total_spend_cents': r.min_total_spend_cents,
             'multiplier_bps': r.multiplier_bps}
            for r in sorted(rule_set.tier_rules, key=lambda r: r.min_total_spend_cents)
        ],
    })


@rules_bp.route('/cashback', methods=['POST'])
@require_tenant
def set_cashback_rule():
    """Body: category, base_rate_bps, starts_at?, ends_at? (ISO 8601, UTC)"""
    data = request.get_json(silent=True) or {}
    try:
        starts_at = _parse_datetime(data.get('starts_at'))
        ends_at = _parse_datetime(data.get('ends_at'))
    except ValueError:
        return bad_request('Dates must be ISO 8601', ErrorCode.VALIDATION_ERROR)

    rule = rule_service.set_cashback_rule(
        g.tenant_id,
        str(data.get('category') or '').upper(),
        data.get('base_rate_bps'),
        starts_at=starts_at,
        ends_at=ends_at,
    )
    return jsonify({'success': True, 'rule': rule.to_dict()}), 201


@rules_bp.route('/tiers', methods=['POST'])
@require_tenant
def set_tier_rule():
    """Body: tier, min_total_spend_cents, multiplier_bps"""
    data = request.get_json(silent=True) or {}
    rule = rule_service.set_tier_rule(
        g.tenant_id,
        data.get('tier'),
        data.get('min_total_spend_cents'),
        data.get('multiplier_bps', 10000),
    )
    return jsonify({'success': True, 'rule': rule.to_dict()}), 201


@rules_bp.route('/<kind>/<int:rule_id>', methods=['DELETE'])
@require_tenant
def deactivate_rule(kind, rule_id):
    rule = rule_service.deactivate_rule(g.tenant_id, kind, rule_id)
    return jsonify({'success': True, 'rule': rule.to_dict()})
