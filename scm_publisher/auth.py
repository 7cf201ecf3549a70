"""Authentication service — local user table.

Decorators:
  - require_auth  — enforces login (session or Bearer token)
  - require_role  — enforces minimum role level

With AUTH_ENABLED=false every request runs as a local "dev" admin, so
tokens and audit fields still have a real user id to point at.
"""
import functools
import logging
import uuid
from datetime import datetime
from typing import Optional

from flask import request, jsonify, session, g

logger = logging.getLogger(__name__)

DEV_USERNAME = "dev"

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#   Decorators
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

ROLE_HIERARCHY = {"admin": 3, "operator": 2, "viewer": 1}


def require_auth(f):
    """Decorator: require authenticated session or Bearer token."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        from scm_publisher.config import settings

        # Kill-switch for development
        if not getattr(settings, "AUTH_ENABLED", False):
            g.current_user = get_dev_user().to_dict()
            return f(*args, **kwargs)

        user = _get_current_user()
        if not user:
            return jsonify({"error": "Authentication required"}), 401

        g.current_user = user.to_dict()
        return f(*args, **kwargs)

    return decorated


def require_role(*roles):
    """Decorator: require a minimum role. Must be placed after @require_auth."""
    needed = min(ROLE_HIERARCHY.get(r, 3) for r in roles) if roles else 1

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", {})
            user_role = user.get("role", "viewer")
            if ROLE_HIERARCHY.get(user_role, 0) < needed:
                return jsonify({"error": "Insufficient permissions"}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


def current_user_id() -> Optional[uuid.UUID]:
    """Id of the user resolved by require_auth."""
    user_id = (getattr(g, "current_user", None) or {}).get("id")
    return uuid.UUID(user_id) if user_id else None


def _get_current_user():
    """Resolve current user from session or Bearer token."""
    from scm_publisher.extensions import db
    from scm_publisher.models.user import User

    # 1. Bearer token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]
        return _validate_api_token(token)

    # 2. Session
    user_id = session.get("user_id")
    if user_id:
        try:
            user = db.session.get(User, uuid.UUID(user_id))
        except ValueError:
            return None
        if user and user.is_active:
            return user

    return None


def _validate_api_token(token: str):
    """Validate Bearer token. Returns User or None."""
    import hmac
    from scm_publisher.config import settings
    from scm_publisher.models.user import User

    expected = getattr(settings, "API_TOKEN", "")
    if expected and hmac.compare_digest(token.encode(), expected.encode()):
        # API token acts as the first active admin
        return User.query.filter_by(role="admin", is_active=True).order_by(User.created_at).first()
    return None


def get_dev_user():
    """Local admin used while authentication is disabled."""
    from scm_publisher.extensions import db
    from scm_publisher.models.user import User

    user = User.query.filter_by(username=DEV_USERNAME).first()
    if user is None:
        user = User(username=DEV_USERNAME, display_name="Developer", role="admin", is_active=True)
        db.session.add(user)
        db.session.commit()
        logger.warning("AUTH_ENABLED is off; requests run as local admin 'dev'")
    return user


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#   Authentication Logic
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def authenticate(username: str, password: str):
    """Authenticate a local user. Returns User on success, None on failure."""
    from scm_publisher.extensions import db
    from scm_publisher.models.user import User

    if not username or not password:
        return None

    username = username.strip().lower()
    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        user.last_login_at = datetime.utcnow()
        db.session.commit()
        return user

    logger.info(f"Failed login for '{username}'")
    return None
