"""
Custom route decorators for access control.

- member_required: the identity provider supplied a member id.
- admin_required: member_required AND is_admin=True on the account summary.
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required


def member_required(f):
    """Require a member identity (401 without one)."""
    return login_required(f)


def admin_required(f):
    """Require a member identity + is_admin flag."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated
