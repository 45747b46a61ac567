"""
Middleware package for the rewards engine.
"""
from .admin_auth import require_admin, get_admin_from_request, ADMIN_HEADER

__all__ = ['require_admin', 'get_admin_from_request', 'ADMIN_HEADER']
