"""
Admin Authentication Middleware.

Admin endpoints identify the caller with the X-Admin-Id header. The id is
recorded as the actor on every audit entry the request produces.
"""
from functools import wraps
from flask import request, g

from ..utils.errors import unauthorized

ADMIN_HEADER = 'X-Admin-Id'


def get_admin_from_request() -> str | None:
    """Admin id from the request header, or None."""
    admin_id = (request.headers.get(ADMIN_HEADER) or '').strip()
    return admin_id or None


def require_admin(f):
    """
    Decorator to require an admin id for admin API endpoints.

    Sets g.admin_id if present.

    Usage:
        @require_admin
        def my_endpoint():
            actor = g.admin_id
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_id = get_admin_from_request()
        if not admin_id:
            return unauthorized(f'Missing {ADMIN_HEADER} header')

        g.admin_id = admin_id
        return f(*args, **kwargs)

    return decorated_function
