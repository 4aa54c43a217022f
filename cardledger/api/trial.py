"""
Free-trial status endpoints.
"""
from flask import Blueprint, jsonify, g

from ..middleware import require_tenant, require_role, ActorRole
from ..services.trial_gate import trial_gate

trial_bp = Blueprint('trial', __name__)


@trial_bp.route('/status', methods=['GET'])
@require_tenant
def get_status():
    status = trial_gate.get_trial_status(g.tenant_id)
    status['can_activate_cards'] = trial_gate.can_activate_cards(g.tenant_id)
    return jsonify(status)


@trial_bp.route('/reset', methods=['POST'])
@require_tenant
@require_role(ActorRole.PLATFORM_ADMIN)
def reset():
    """Platform-admin reset of the trial counter."""
    return jsonify({'success': True, 'trial': trial_gate.reset_trial(g.tenant_id)})
