"""
Session tokens.

Stateless HS256 JWTs carrying username, role and issue time, valid for one
hour. There is no revocation list: expiry, or the browser discarding the
token, ends a session.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from ..utils.logger import get_logger
from .models import SessionUser

logger = get_logger(__name__)

ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = 3600

EXPIRED = "expired"
MALFORMED = "malformed"
SIGNATURE_INVALID = "signature-invalid"


@dataclass(frozen=True)
class TokenVerification:
    valid: bool
    user: Optional[SessionUser] = None
    reason: Optional[str] = None


class TokenService:
    def __init__(
        self,
        signing_secret: bytes,
        ttl_seconds: int = TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._key = signing_secret.hex()
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def issue(self, user: SessionUser) -> str:
        issued_at = int(self.clock())
        claims = {
            "username": user.username,
            "role": user.role,
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
        }
        return jwt.encode(claims, self._key, algorithm=ALGORITHM)

    def verify(self, token: Optional[str]) -> TokenVerification:
        """Check signature first, then expiry.

        Callers treat every failure the same way; the reason is for logs.
        """
        if not token:
            return TokenVerification(valid=False, reason=MALFORMED)
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return TokenVerification(valid=False, reason=MALFORMED)

        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.info("Token signature rejected", error=str(e))
            return TokenVerification(valid=False, reason=SIGNATURE_INVALID)

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self.clock() > exp:
            return TokenVerification(valid=False, reason=EXPIRED)

        try:
            user = SessionUser(username=claims.get("username"), role=claims.get("role"))
        except PydanticValidationError:
            return TokenVerification(valid=False, reason=MALFORMED)
        return TokenVerification(valid=True, user=user)
