# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an acting user id and expose it as g.actor_id.

    Authentication and permission checks happen upstream (gateway/session
    layer); this service only needs to know who to stamp on records and
    stock adjustments. Returns 401 when the header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        if not (raw.isascii() and raw.isdigit()):
            return jsonify({"error": f"Invalid {ACTOR_HEADER} header"}), 401

        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
