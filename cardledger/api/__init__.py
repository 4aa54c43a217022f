"""
REST API blueprints. Every route is tenant-scoped via X-Tenant-ID.
"""
