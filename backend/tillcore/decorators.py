# Overview: Request and permission decorators for API routes.

from __future__ import annotations

from dataclasses import dataclass, field
from functools import wraps

from flask import current_app, g, jsonify, request

from .permissions import permissions_for_role, validate_permission_code


@dataclass
class AuthContext:
    """What the auth collaborator knows about the caller."""
    employee_id: str
    store_id: int
    permissions: set[str] = field(default_factory=set)
    is_owner: bool = False
    staff_name: str | None = None


class StaticTokenAuthProvider:
    """
    Resolves bearer tokens from a static mapping (config API_TOKENS).

    Each entry: {"employee_id", "store_id", "permissions" | "role", "is_owner", "name"}.
    """

    def __init__(self, tokens: dict | None = None):
        self.tokens = dict(tokens or {})

    def add_token(self, token: str, entry: dict) -> None:
        self.tokens[token] = entry

    def resolve(self, token: str) -> AuthContext | None:
        entry = self.tokens.get(token)
        if not entry:
            return None

        is_owner = bool(entry.get("is_owner", False))
        permissions = set(entry.get("permissions") or [])
        if entry.get("role"):
            permissions |= permissions_for_role(entry["role"])
        if is_owner:
            permissions |= permissions_for_role("owner")

        unknown = [code for code in permissions if not validate_permission_code(code)]
        if unknown:
            current_app.logger.warning("Ignoring unknown permissions for %s: %s", entry.get("employee_id"), unknown)
            permissions -= set(unknown)

        return AuthContext(
            employee_id=str(entry.get("employee_id") or ""),
            store_id=int(entry["store_id"]),
            permissions=permissions,
            is_owner=is_owner,
            staff_name=entry.get("name"),
        )


def get_auth_provider():
    return current_app.extensions["tillcore.auth_provider"]


def _is_authenticated() -> bool:
    return hasattr(g, "auth") and hasattr(g, "store_id")


def require_auth(f):
    """
    Require authentication and establish store context.

    Sets on Flask g:
    - g.auth: the AuthContext
    - g.employee_id, g.store_id, g.permissions, g.is_owner

    Returns 401 when the Authorization header is missing or the token is unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        context = get_auth_provider().resolve(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.auth = context
        g.employee_id = context.employee_id
        g.store_id = context.store_id
        g.permissions = context.permissions
        g.is_owner = context.is_owner

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission on the authenticated caller."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if permission_code not in g.permissions:
                current_app.logger.info(
                    "Permission denied: %s lacks %s on %s %s",
                    g.employee_id, permission_code, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": f"Missing permission: {permission_code}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_owner(f):
    """Require the authenticated caller to be the store owner."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not g.is_owner:
            return jsonify({"error": "Store owner access required"}), 403
        return f(*args, **kwargs)
    return decorated_function
