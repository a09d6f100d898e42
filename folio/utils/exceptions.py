"""Custom exceptions for the Folio admin backend"""

from typing import Optional


class FolioError(Exception):
    """Base exception for Folio.

    Every subclass maps to one HTTP status and carries a short,
    machine-readable ``reason`` that is safe to show to the browser.
    """

    status_code = 500
    default_reason = "internal_error"

    def __init__(self, message: str, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(message)


class ConfigError(FolioError):
    """Configuration error (missing master secret or provider credentials)"""

    default_reason = "configuration_error"


class AuthError(FolioError):
    """Missing, invalid or expired session token"""

    status_code = 401
    default_reason = "unauthorized"


class ForbiddenError(AuthError):
    """Authenticated, but the role is not sufficient"""

    status_code = 403
    default_reason = "insufficient_role"


class ValidationError(FolioError):
    """Malformed body or field constraint violation"""

    status_code = 400
    default_reason = "invalid_request"


class NotFoundError(FolioError):
    """Unknown account or item"""

    status_code = 404
    default_reason = "not_found"


class ConflictError(FolioError):
    """Duplicate username"""

    status_code = 409
    default_reason = "conflict"


class UpstreamError(FolioError):
    """Error from the Git hosting provider"""

    default_reason = "upstream_error"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.status = status
        super().__init__(message, reason)


class ProviderNotFound(UpstreamError):
    """Provider answered 404 for a path, ref or object"""

    default_reason = "upstream_not_found"

    def __init__(self, message: str):
        super().__init__(message, status=404)


class RefUpdateRejected(UpstreamError):
    """Branch reference update refused (stale parent or protected branch)"""

    default_reason = "ref_update_rejected"


class DecryptionFailure(FolioError):
    """Stored credential could not be decrypted. Never leaves the vault."""

    default_reason = "decryption_failed"


class MalformedResponse(UpstreamError):
    """Response body could not be parsed as JSON"""

    default_reason = "malformed_response"
