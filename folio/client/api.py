"""Admin API client: the browser side of the session boundary, in Python."""

from typing import Any, Dict, List, Optional

import requests

from ..core.retry import RetryPolicy
from ..utils.exceptions import (
    AuthError,
    ConflictError,
    FolioError,
    ForbiddenError,
    MalformedResponse,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from ..utils.logger import get_logger
from .accumulator import ChangeAccumulator

logger = get_logger(__name__)

ERRORS_BY_STATUS = {
    400: ValidationError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
}


class AdminClient:
    """Talks to a Folio server with a bearer token.

    Network errors, 5xx answers and unparsable bodies are retried under the
    retry policy. A 401 is never retried: the stored token is dropped and
    AuthError is raised so the caller logs in again.
    """

    def __init__(
        self,
        base_url: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def logout(self) -> None:
        self.token = None
        self.user = None

    def _request_once(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )

        if response.status_code == 401:
            logger.warning("Session rejected by server; clearing token", path=path)
            self.logout()
            raise AuthError("Session expired. Please login again.")

        try:
            body = response.json()
        except ValueError:
            raise MalformedResponse(f"Invalid JSON from {method} {path}", status=response.status_code)

        detail = body if isinstance(body, dict) else {}
        if response.status_code >= 500:
            raise UpstreamError(
                detail.get("message") or "Server error",
                reason=detail.get("error"),
                status=response.status_code,
            )
        if response.status_code >= 400:
            error_cls = ERRORS_BY_STATUS.get(response.status_code, FolioError)
            raise error_cls(detail.get("message") or f"HTTP {response.status_code}", reason=detail.get("error"))
        return body

    def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return self.retry_policy.call(self._request_once, method, path, payload)
        except requests.RequestException as e:
            raise UpstreamError(f"Network error: {e.__class__.__name__}") from e

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def login(self, password: str, username: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"password": password}
        if username:
            payload["username"] = username
        result = self.request("POST", "/api/auth/login", payload)
        self.token = result["token"]
        self.user = result.get("user")
        logger.info("Logged in", username=(self.user or {}).get("username"))
        return result

    def verify(self) -> bool:
        if not self.token:
            return False
        try:
            result = self.request("POST", "/api/auth/verify", {"token": self.token})
        except AuthError:
            return False
        if result.get("valid"):
            self.user = result.get("user")
            return True
        self.logout()
        return False

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def get_content(self) -> Dict[str, Any]:
        return self.request("GET", "/api/data/content")

    def put_content(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("PUT", "/api/data/content", patch)

    def list_collection(self, collection: str) -> List[Dict[str, Any]]:
        return self.request("GET", f"/api/data/{collection}")

    def list_accounts(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/api/auth/users")["users"]

    def submit(self, accumulator: ChangeAccumulator) -> Dict[str, Any]:
        """Send the buffered changes as one batch; the buffer is cleared on success."""
        if accumulator.is_empty():
            return {"success": True, "committed": False, "message": "No changes to save"}
        result = self.request("POST", "/api/data/batch", accumulator.to_batch_payload())
        accumulator.clear()
        logger.info("Batch submitted", commit=result.get("commitSha"))
        return result
