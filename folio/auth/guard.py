"""Role checks applied at the entry of every mutating operation."""

from __future__ import annotations

from typing import Iterable, Optional

from ..utils.exceptions import AuthError, ForbiddenError
from .models import SessionUser
from .tokens import TokenService

ACCOUNT_ADMIN = frozenset({"admin"})
CONTENT_EDIT = frozenset({"admin", "editor"})


def authenticate_bearer(tokens: TokenService, token: Optional[str]) -> SessionUser:
    """Verified session user for ``token``, or AuthError."""
    if not token:
        raise AuthError("Authentication required", reason="missing_token")
    verification = tokens.verify(token)
    if not verification.valid:
        reason = "token_expired" if verification.reason == "expired" else "invalid_token"
        raise AuthError("Invalid or expired token", reason=reason)
    return verification.user


def ensure_role(user: SessionUser, allowed: Iterable[str]) -> SessionUser:
    if user.role not in allowed:
        raise ForbiddenError(f"Role '{user.role}' may not perform this operation")
    return user
