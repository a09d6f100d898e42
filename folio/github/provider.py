"""
Provider interface and its GitHub implementation.

The repository is the system of record. Everything Folio persists goes
through the eight primitives below: single-file reads and writes through
the contents API, and the blob/tree/commit/ref sequence for batches.
"""

from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.config import ProviderCredentials
from ..core.retry import RetryPolicy
from ..utils.exceptions import ProviderNotFound, RefUpdateRejected, UpstreamError
from ..utils.logger import get_logger
from .client import GitHubClient

logger = get_logger(__name__)

FALLBACK_BRANCHES = ("main", "master")
BLOB_MODE = "100644"


@dataclass(frozen=True)
class BranchTip:
    branch: str
    commit_sha: str
    tree_sha: str


@dataclass(frozen=True)
class TreeEntry:
    path: str
    mode: str
    sha: str
    type: str = "blob"

    def to_payload(self) -> Dict[str, str]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


def to_json_text(data: Any) -> str:
    """Deterministic JSON: sorted keys, two-space indent, trailing newline."""
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


class ContentProvider(ABC):
    """What Folio needs from a Git hosting provider."""

    @abstractmethod
    def read_file(self, path: str) -> Optional[str]:
        """Return file text at the branch tip, or None if it does not exist."""

    @abstractmethod
    def write_file(self, path: str, content: str, message: str) -> str:
        """Commit one file; returns the new commit sha."""

    @abstractmethod
    def get_branch_tip(self) -> BranchTip:
        """Resolve the working branch and its current commit and tree."""

    @abstractmethod
    def list_tree_entries(self, tree_sha: str, recursive: bool = True) -> List[TreeEntry]:
        """Blob entries of a tree (recursively flattened to full paths)."""

    @abstractmethod
    def create_blob(self, content: str) -> str:
        """Store file content; returns the blob sha."""

    @abstractmethod
    def create_tree(self, base_tree_sha: Optional[str], entries: List[TreeEntry]) -> str:
        """Create a tree from entries layered on an optional base; returns its sha."""

    @abstractmethod
    def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        """Create a commit object with one parent; returns its sha."""

    @abstractmethod
    def update_ref(self, branch: str, commit_sha: str) -> None:
        """Fast-forward ``branch`` to ``commit_sha``; raises RefUpdateRejected."""

    def read_json(self, path: str, default: Any) -> Any:
        """Parsed JSON at ``path``; ``default`` when the file does not exist."""
        text = self.read_file(path)
        if text is None or not text.strip():
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Stored document is not valid JSON", path=path, error=str(e))
            raise UpstreamError(f"Stored document {path} is not valid JSON", reason="corrupt_document")


class GitHubProvider(ContentProvider):
    """ContentProvider over the GitHub contents and git data APIs."""

    def __init__(
        self,
        credentials: ProviderCredentials,
        client: Optional[GitHubClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.credentials = credentials
        self.client = client or GitHubClient(credentials, retry_policy=retry_policy)
        self._repo_path = f"/repos/{credentials.owner}/{credentials.repo}"
        self._branch: Optional[str] = credentials.branch

    def _candidate_branches(self) -> List[str]:
        if self.credentials.branch:
            return [self.credentials.branch]
        candidates: List[str] = []
        try:
            info = self.client.get(self._repo_path)
            default_branch = info.get("default_branch")
            if default_branch:
                candidates.append(default_branch)
        except UpstreamError as e:
            logger.warning("Could not read repository info; probing fallback branches", error=str(e))
        for name in FALLBACK_BRANCHES:
            if name not in candidates:
                candidates.append(name)
        return candidates

    def get_branch_tip(self) -> BranchTip:
        for branch in self._candidate_branches():
            try:
                ref = self.client.get(f"{self._repo_path}/git/ref/heads/{branch}")
            except ProviderNotFound:
                logger.debug("Branch not found", branch=branch)
                continue
            commit_sha = ref["object"]["sha"]
            commit = self.client.get(f"{self._repo_path}/git/commits/{commit_sha}")
            self._branch = branch
            return BranchTip(branch=branch, commit_sha=commit_sha, tree_sha=commit["tree"]["sha"])
        raise UpstreamError("Failed to get current commit reference", reason="branch_not_found")

    def read_file(self, path: str) -> Optional[str]:
        params = {"ref": self._branch} if self._branch else None
        try:
            data = self.client.get(f"{self._repo_path}/contents/{path}", params=params)
        except ProviderNotFound:
            return None
        encoded = data.get("content") or ""
        return base64.b64decode(encoded).decode("utf-8")

    def _file_sha(self, path: str) -> Optional[str]:
        params = {"ref": self._branch} if self._branch else None
        try:
            return self.client.get(f"{self._repo_path}/contents/{path}", params=params).get("sha")
        except ProviderNotFound:
            return None

    def write_file(self, path: str, content: str, message: str) -> str:
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        sha = self._file_sha(path)
        if sha:
            payload["sha"] = sha
        if self._branch:
            payload["branch"] = self._branch
        result = self.client.send("PUT", f"{self._repo_path}/contents/{path}", payload)
        commit_sha = (result.get("commit") or {}).get("sha", "")
        logger.info("File committed", path=path, commit=commit_sha)
        return commit_sha

    def list_tree_entries(self, tree_sha: str, recursive: bool = True) -> List[TreeEntry]:
        params = {"recursive": "1"} if recursive else None
        data = self.client.get(f"{self._repo_path}/git/trees/{tree_sha}", params=params)
        if data.get("truncated"):
            # The tree is still built on base_tree, so a partial listing is safe
            logger.warning("Tree listing truncated by provider", tree=tree_sha)
        return [
            TreeEntry(path=item["path"], mode=item["mode"], sha=item["sha"], type=item["type"])
            for item in data.get("tree", [])
            if item.get("type") == "blob"
        ]

    def create_blob(self, content: str) -> str:
        result = self.client.send(
            "POST",
            f"{self._repo_path}/git/blobs",
            {
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "encoding": "base64",
            },
        )
        return result["sha"]

    def create_tree(self, base_tree_sha: Optional[str], entries: List[TreeEntry]) -> str:
        payload: Dict[str, Any] = {"tree": [e.to_payload() for e in entries]}
        if base_tree_sha:
            payload["base_tree"] = base_tree_sha
        return self.client.send("POST", f"{self._repo_path}/git/trees", payload)["sha"]

    def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        result = self.client.send(
            "POST",
            f"{self._repo_path}/git/commits",
            {"message": message, "tree": tree_sha, "parents": [parent_sha]},
        )
        return result["sha"]

    def update_ref(self, branch: str, commit_sha: str) -> None:
        try:
            self.client.send(
                "PATCH",
                f"{self._repo_path}/git/refs/heads/{branch}",
                {"sha": commit_sha, "force": False},
            )
        except UpstreamError as e:
            if e.status in (409, 422):
                raise RefUpdateRejected(
                    f"Failed to update reference: branch {branch} moved or is protected",
                    status=e.status,
                )
            raise
