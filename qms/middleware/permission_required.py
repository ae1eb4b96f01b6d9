"""
Permission Decorators — JWT-aware role checks for route protection.

Usage:
    @bp.route("/improvement-ideas/<int:idea_id>/approve", methods=["POST"])
    @require_auth
    def approve_idea(idea_id, caller):
        ...

    @bp.route("/ncrs/<int:ncr_id>", methods=["DELETE"])
    @require_roles("admin")
    def delete_ncr(ncr_id, caller):
        ...

Both decorators pass the request's ``Caller`` to the view as the ``caller``
keyword argument. Superuser satisfies every role check.
"""

import functools
import logging

from flask import g

from qms.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_auth(f):
    """Decorator: require an authenticated caller (401 otherwise)."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        caller = getattr(g, "caller", None)
        if caller is None:
            return api_error(E.AUTH_REQUIRED, "User not authenticated")
        kwargs["caller"] = caller
        return f(*args, **kwargs)
    return decorated


def require_roles(*role_names: str):
    """
    Decorator: require the caller to hold at least ONE of the listed roles.

    Args:
        role_names: Role names, e.g. "admin", "manager".
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            caller = getattr(g, "caller", None)
            if caller is None:
                return api_error(E.AUTH_REQUIRED, "User not authenticated")

            if not caller.has_role(*role_names):
                logger.warning(
                    "User %d denied: needs any of %s on %s",
                    caller.user_id, role_names, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "Insufficient permissions",
                    details={"requiredAny": list(role_names)},
                )

            kwargs["caller"] = caller
            return f(*args, **kwargs)
        return decorated
    return decorator
