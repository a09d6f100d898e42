"""
Auth dependencies for protected routes.

require_login() reads the bearer token from the Authorization header,
verifies it and returns the session user. The role variants run the role
check as well. All of them resolve before the route body, so an
unauthorized call never reaches the provider.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from folio.auth.guard import ACCOUNT_ADMIN, CONTENT_EDIT, authenticate_bearer, ensure_role
from folio.auth.models import SessionUser

from .services import Services, get_services


def extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


async def optional_login(
    request: Request,
    services: Services = Depends(get_services),
) -> Optional[SessionUser]:
    """Session user when a token is sent; an invalid token is still rejected."""
    token = extract_token(request)
    if token is None:
        return None
    return authenticate_bearer(services.tokens, token)


async def require_login(
    request: Request,
    services: Services = Depends(get_services),
) -> SessionUser:
    return authenticate_bearer(services.tokens, extract_token(request))


async def require_editor(user: SessionUser = Depends(require_login)) -> SessionUser:
    return ensure_role(user, CONTENT_EDIT)


async def require_admin(user: SessionUser = Depends(require_login)) -> SessionUser:
    return ensure_role(user, ACCOUNT_ADMIN)
