"""
Middleware package for the ledger API.
"""
from .tenant_context import (
    ActorRole,
    require_tenant,
    require_role,
    get_tenant_id_from_request,
    init_request_id_tracking,
)
