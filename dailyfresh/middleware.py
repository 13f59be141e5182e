"""Middleware for caller identity (signed-in users and guests alike)."""
from functools import wraps
from flask import session, g, request, current_app
from dailyfresh.exceptions import AuthError

GUEST_TOKEN_HEADER = 'X-Guest-Token'


def load_customer():
    """
    Load the caller identity into g.

    Sets g.customer_ref to 'user:<id>' for a signed-in user, or
    'guest:<token>' for a guest carrying a session or header token.
    Sets g.admin_user_id when an admin session is present.
    """
    g.customer_ref = None
    g.user_id = None
    g.admin_user_id = None

    try:
        user_id = session.get('user_id')
        if user_id:
            g.user_id = user_id
            g.customer_ref = f'user:{user_id}'
        else:
            guest_token = session.get('guest_token') or request.headers.get(GUEST_TOKEN_HEADER)
            if guest_token:
                g.customer_ref = f'guest:{guest_token.strip()}'

        g.admin_user_id = session.get('admin_user_id')
    except Exception as e:
        # A malformed session must not take the whole request down
        current_app.logger.error(f"Error in load_customer: {e}")


def require_customer(f):
    """
    Decorator: Require a signed-in user or an identified guest.

    Raises AuthError (401) otherwise.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('customer_ref'):
            raise AuthError('Please sign in or start a guest session to continue')
        return f(*args, **kwargs)
    return decorated_function
