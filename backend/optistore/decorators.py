# Overview: Request decorators for authentication, store context and platform-admin routes.

from functools import wraps
from flask import request, jsonify, g

from .models.auth import ROLE_SUPER_ADMIN
from .services import session_service
from .services.tenant_service import AuthorizationError, StoreContextMissing, resolve_store_context
from .validation import NotFoundError


STORE_HEADER = "X-Store-Id"


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user. Returns 401 if the Authorization header is missing,
    the token is unknown, revoked or expired, or the user is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"message": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        user = session_service.validate_session(token)

        if not user:
            return jsonify({"message": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_store_context(f):
    """
    Resolve the active store and set g.tenant (a TenantContext).

    Must be applied after @require_auth. The store comes from the
    X-Store-Id header, falling back to the user's last selected store.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"message": "Authentication required"}), 401

        try:
            g.tenant = resolve_store_context(g.current_user, request.headers.get(STORE_HEADER))
        except StoreContextMissing as e:
            return jsonify({"message": str(e)}), 422
        except NotFoundError as e:
            return jsonify({"message": str(e)}), 404
        except AuthorizationError as e:
            return jsonify({"message": str(e)}), 403

        return f(*args, **kwargs)

    return decorated_function


def require_super_admin(f):
    """Platform administration routes. Must be applied after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"message": "Authentication required"}), 401

        if g.current_user.role != ROLE_SUPER_ADMIN:
            return jsonify({"message": "Forbidden"}), 403

        return f(*args, **kwargs)

    return decorated_function
