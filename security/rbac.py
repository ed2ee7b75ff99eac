from functools import wraps
from flask import g, jsonify


def _role_names(user) -> set:
    return {r.name for r in user.roles}


def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    ADMIN passes every role check.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            user_roles = _role_names(user)
            if "ADMIN" not in user_roles and not user_roles.intersection(role_names):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def require_provider(fn):
    """PROVIDER with a business profile. Sets g.provider for ownership checks."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = getattr(g, "user", None)
        if user is None:
            return jsonify(error="Authentication required"), 401
        if not user.has_role("PROVIDER") or user.provider is None:
            return jsonify(error="Forbidden"), 403
        g.provider = user.provider
        return fn(*args, **kwargs)
    return wrapper
