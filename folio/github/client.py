"""GitHub REST API client"""

from typing import Any, Dict, Optional

import requests

from ..core.config import ProviderCredentials
from ..core.retry import RetryPolicy
from ..utils.exceptions import (
    ConfigError,
    MalformedResponse,
    ProviderNotFound,
    UpstreamError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

API_VERSION = "2022-11-28"


class GitHubClient:
    """Thin HTTP layer: auth headers, error mapping and retries on reads.

    Writes are sent exactly once. A retried blob or commit is harmless, but a
    retried ref update or contents PUT after an ambiguous failure is not.
    """

    def __init__(
        self,
        credentials: ProviderCredentials,
        retry_policy: Optional[RetryPolicy] = None,
        connection_timeout: int = 10,
        read_timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        if not credentials.is_complete:
            raise ConfigError(
                "GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO must be set in environment."
            )
        self.base_url = credentials.api_base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = (connection_timeout, read_timeout)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {credentials.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            }
        )

    def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make one HTTP request to the GitHub API

        Raises:
            ProviderNotFound: on 404
            UpstreamError: on any other error status
            MalformedResponse: if the body is not JSON
            requests.RequestException: on network failure
        """
        url = f"{self.base_url}{path}"
        logger.debug("GitHub API request", method=method, path=path)
        response = self.session.request(
            method=method,
            url=url,
            params=params,
            json=payload,
            timeout=self.timeout,
        )

        if response.status_code == 404:
            raise ProviderNotFound(f"Not found: {path}")

        if response.status_code >= 400:
            # Provider bodies go to the log only
            logger.error(
                "GitHub API error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(
                f"GitHub API error ({response.status_code}) on {method} {path}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            raise MalformedResponse(
                f"GitHub API returned a non-JSON body for {method} {path}",
                status=response.status_code,
            )

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET with the retry policy applied."""
        try:
            return self.retry_policy.call(self._make_request, "GET", path, params=params)
        except requests.RequestException as e:
            raise UpstreamError(f"GitHub API unreachable: {e.__class__.__name__}") from e

    def send(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Mutating request, never retried."""
        try:
            return self._make_request(method, path, payload=payload)
        except requests.RequestException as e:
            raise UpstreamError(f"GitHub API unreachable: {e.__class__.__name__}") from e
