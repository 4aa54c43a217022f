"""
Notification log endpoints for support tooling.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_tenant
from ..services.notification_dispatcher import notification_dispatcher
from ..utils.errors import not_found

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('', methods=['GET'])
@require_tenant
def list_notifications():
    """Query params: status (PENDING/SENT/FAILED), customer_id, limit, offset."""
    limit = min(request.args.get('limit', 50, type=int), 200)
    notifications = notification_dispatcher.list_notifications(
        g.tenant_id,
        status=request.args.get('status'),
        customer_id=request.args.get('customer_id', type=int),
        limit=limit,
        offset=request.args.get('offset', 0, type=int),
    )
    return jsonify({'notifications': [n.to_dict() for n in notifications]})


@notifications_bp.route('/<int:notification_id>/retry', methods=['POST'])
@require_tenant
def retry_notification(notification_id):
    notification = notification_dispatcher.retry(notification_id, tenant_id=g.tenant_id)
    if notification is None:
        return not_found('Notification not found')
    return jsonify({'success': notification.status == 'SENT', 'notification': notification.to_dict()})
