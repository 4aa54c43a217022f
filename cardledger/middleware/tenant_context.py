"""
Tenant and actor context for API requests.

Session authentication lives in front of this service; by the time a
request arrives here the gateway has resolved who is calling and forwards
it as headers:

    X-Tenant-ID:    numeric tenant id (required)
    X-Actor-ID:     staff user id recorded on ledger rows (optional)
    X-Actor-Role:   platform_admin, tenant_admin or cashier (defaults to cashier)
"""
import uuid
from enum import Enum
from functools import wraps
from flask import request, g

from ..extensions import db
from ..models import Tenant
from ..utils.errors import error_response, unauthorized, ErrorCode


class ActorRole(str, Enum):
    PLATFORM_ADMIN = 'platform_admin'
    TENANT_ADMIN = 'tenant_admin'
    CASHIER = 'cashier'


def get_tenant_id_from_request():
    raw = request.headers.get('X-Tenant-ID')
    if not raw:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def get_actor_role_from_request() -> str:
    raw = (request.headers.get('X-Actor-Role') or '').strip().lower()
    return raw or ActorRole.CASHIER.value


def require_tenant(f):
    """
    Decorator to require a tenant context.

    Sets g.tenant_id, g.tenant, g.actor_id and g.actor_role.

    Usage:
        @require_tenant
        def my_endpoint():
            tenant_id = g.tenant_id
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = get_tenant_id_from_request()
        if tenant_id is None:
            return unauthorized('Missing or invalid X-Tenant-ID header')

        tenant = db.session.get(Tenant, tenant_id)
        if not tenant:
            return error_response('Tenant not found', 'TENANT_NOT_FOUND', 404, log_error=False)

        g.tenant_id = tenant.id
        g.tenant = tenant
        g.actor_id = request.headers.get('X-Actor-ID') or None
        g.actor_role = get_actor_role_from_request()

        return f(*args, **kwargs)

    return decorated_function


def require_role(*allowed_roles):
    """
    Decorator restricting an endpoint to the given actor roles.

    Platform admins pass every check. Apply below @require_tenant.

    Usage:
        @require_tenant
        @require_role(ActorRole.TENANT_ADMIN)
        def adjust():
            ...
    """
    allowed = {getattr(role, 'value', role) for role in allowed_roles}
    allowed.add(ActorRole.PLATFORM_ADMIN.value)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = getattr(g, 'actor_role', None) or get_actor_role_from_request()
            if role not in allowed:
                return error_response(
                    'Insufficient permissions', ErrorCode.PERMISSION_DENIED, 403, log_error=True,
                    details={'role': role, 'actor_id': getattr(g, 'actor_id', None)},
                )
            return f(*args, **kwargs)
        return decorated_function

    return decorator


def init_request_id_tracking(app):
    """Give every request an id (honouring an inbound X-Request-ID) and echo it back."""

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex[:16]

    @app.after_request
    def add_request_id_header(response):
        request_id = getattr(g, 'request_id', None)
        if request_id:
            response.headers['X-Request-ID'] = request_id
        return response
