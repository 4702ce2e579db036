"""
Construction Tracker

Multi-tenant construction project tracking API. Tenant isolation is
enforced in the data layer (app/data) from a per-request TenantContext
populated by TenantMiddleware from the signed session token.
"""

__version__ = "1.0.0"
