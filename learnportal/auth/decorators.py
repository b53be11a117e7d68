"""Decorators for the auth blueprint."""

from functools import wraps

from flask import g

from learnportal.errors import AppError, AuthorizationError


def login_required(f=None, roles=None):
    """Reject the request unless a user is logged in.

    Usage:
    @login_required
    def protected_view():
        ...

    @login_required(roles=ADMIN_ROLES)
    def admin_view():
        ...
    """

    def decorator(func):
        @wraps(func)
        def decorated_function(*args, **kwargs):
            if g.get("user") is None:
                raise AppError("Authentication required.", 401)
            if roles and g.user.get("role") not in roles:
                raise AuthorizationError()
            return func(*args, **kwargs)

        return decorated_function

    if f:
        return decorator(f)
    return decorator
