from collections import namedtuple
from functools import wraps
from flask import current_app, g, jsonify, request

# Authentication happens in front of this service; we only read the identity it forwards
CurrentUser = namedtuple("CurrentUser", ["id", "roles"])

def load_current_user():
    user_id = (request.headers.get(current_app.config.get("AUTH_USER_HEADER", "X-User-Id")) or "").strip()
    if not user_id:
        g.user = None
        return
    raw_roles = request.headers.get(current_app.config.get("AUTH_ROLES_HEADER", "X-User-Roles")) or ""
    roles = frozenset(r.strip().upper() for r in raw_roles.split(",") if r.strip())
    g.user = CurrentUser(id=user_id.lower(), roles=roles)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
