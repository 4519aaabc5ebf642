# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import auth_service


def require_auth(f):
    """
    Require a bearer API token.

    Sets g.current_user to the authenticated User. Services receive
    g.current_user.id as the acting user.

    Returns 401 if:
    - No Authorization header
    - Unknown or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        user = auth_service.resolve_token(token)
        if user is None:
            return jsonify({"error": "Invalid or revoked token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
