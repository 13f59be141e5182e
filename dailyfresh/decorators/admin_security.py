"""
Admin security decorators.
Back-office routes (status changes, reconciliation) require an admin session.
"""

from functools import wraps
from flask import session, g
from dailyfresh.exceptions import AuthError, UnauthorizedError


def admin_required(f):
    """
    Decorator: Require admin user to be logged in.

    IMPORTANT: This checks session['admin_user_id'], not the customer
    identity. Admin authentication is separate from customer sessions.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_user_id = session.get('admin_user_id')
        if not admin_user_id:
            if session.get('user_id'):
                # Signed in, but as a customer
                raise UnauthorizedError('Admin access required')
            raise AuthError('Admin authentication required')

        g.admin_user_id = admin_user_id
        g.admin_actor = f'admin:{admin_user_id}'
        return f(*args, **kwargs)

    return decorated_function
