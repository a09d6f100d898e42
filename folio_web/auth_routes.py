"""
FastAPI routes for authentication and account management.

Prefix: /api/auth
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from pydantic import BaseModel

from folio.auth.guard import authenticate_bearer
from folio.auth.models import AccountPatch, AccountPublic, NewAccount, SessionUser
from folio.auth.tokens import TOKEN_TTL_SECONDS
from folio.utils.exceptions import AuthError, ValidationError
from folio.utils.logger import get_logger

from .auth_deps import extract_token, optional_login, require_admin, require_login
from .services import Services, get_services

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: str


class VerifyRequest(BaseModel):
    token: Optional[str] = None


def _public(account) -> Dict[str, Any]:
    return AccountPublic.from_account(account).model_dump(by_alias=True)


@router.post("/login")
def login(body: LoginRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """
    Exchange credentials for a session token.

    Without ``username`` the password is checked against the master secret
    (single-operator mode) and an admin session is issued.

    Response:
        {"success": true, "token": "...", "user": {"username", "role"}, "expiresIn": 3600}
    """
    if not body.password:
        raise ValidationError("Password required")
    if body.username:
        user = services.accounts.authenticate(body.username, body.password)
    else:
        user = services.accounts.authenticate_master(body.password)
    if user is None:
        logger.info("Login failed", username=body.username)
        raise AuthError("Invalid credentials", reason="invalid_credentials")

    logger.info("Login succeeded", username=user.username, role=user.role)
    return {
        "success": True,
        "token": services.tokens.issue(user),
        "user": user.model_dump(),
        "expiresIn": TOKEN_TTL_SECONDS,
    }


@router.post("/verify")
def verify(
    request: Request,
    body: Optional[VerifyRequest] = Body(default=None),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Check a token from the Authorization header or the request body."""
    token = extract_token(request) or (body.token if body else None)
    user = authenticate_bearer(services.tokens, token)
    return {"success": True, "valid": True, "user": user.model_dump()}


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    body: NewAccount,
    acting: Optional[SessionUser] = Depends(optional_login),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """
    Create an account.

    The very first account needs no session and is always an admin.
    After that an admin token is required.
    """
    account = services.accounts.register(body, acting)
    return {"success": True, "message": "User registered successfully", "user": _public(account)}


@router.get("/users")
def list_users(
    _: SessionUser = Depends(require_admin),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    users = [u.model_dump(by_alias=True) for u in services.accounts.list_public()]
    return {"success": True, "users": users}


@router.put("/users/{username}")
def update_user(
    username: str,
    patch: AccountPatch,
    acting: SessionUser = Depends(require_login),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Admins may edit any account; everyone else only their own password and e-mail."""
    account = services.accounts.update_account(username, patch, acting)
    return {"success": True, "message": "User updated successfully", "user": _public(account)}


@router.delete("/users/{username}")
def delete_user(
    username: str,
    acting: SessionUser = Depends(require_admin),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    services.accounts.delete_account(username, acting)
    return {"success": True, "message": "User deleted successfully"}
