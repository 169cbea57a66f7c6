# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def require_actor(f):
    """
    Require an acting user on write routes.

    Identity is issued upstream; the gateway forwards it as headers:
    - X-Actor-Id   (required) -> g.actor_id
    - X-Actor-Name (optional) -> g.actor_name

    Returns 401 when X-Actor-Id is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get("X-Actor-Id") or "").strip()
        if not actor_id:
            return jsonify({"error": "X-Actor-Id header required"}), 401

        g.actor_id = actor_id
        g.actor_name = (request.headers.get("X-Actor-Name") or "").strip() or None

        return f(*args, **kwargs)

    return decorated_function
