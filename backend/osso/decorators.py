# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.permission_service import Actor, has_role
from .validation import ValidationError


USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


def _is_authenticated() -> bool:
    return hasattr(g, 'actor') and g.actor is not None


def require_auth(f):
    """
    Require an identity forwarded by the auth collaborator.

    Sets g.actor to an Actor(user_id, role) built from the trusted
    X-User-Id / X-User-Role headers.

    Returns 401 if either header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = request.headers.get(USER_ID_HEADER)
        role = request.headers.get(USER_ROLE_HEADER)

        if not user_id or not role:
            return jsonify({"error": "Authentication required"}), 401

        try:
            g.actor = Actor.from_values(user_id, role)
        except ValidationError as e:
            return jsonify({"error": "Invalid identity", "message": str(e)}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the authenticated actor to hold any of `roles`.

    Accepts role names or allow-list sets from osso.permissions.
    """
    allowed = set()
    for item in roles:
        if isinstance(item, str):
            allowed.add(item)
        else:
            allowed.update(item)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not has_role(g.actor, allowed):
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                    "message": f"Role {g.actor.role} is not allowed here",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
