"""Shared fixtures: an in-memory Git provider and pre-wired services."""

import itertools
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from folio.auth.accounts import USERS_PATH, AccountStore
from folio.auth.crypto import CredentialVault
from folio.auth.models import Account, SessionUser
from folio.auth.tokens import TokenService
from folio.batch.orchestrator import BatchOrchestrator
from folio.core.config import Config, ProviderCredentials
from folio.github.provider import BLOB_MODE, BranchTip, ContentProvider, TreeEntry, to_json_text
from folio.utils.exceptions import RefUpdateRejected, UpstreamError

MASTER_SECRET = "test-master-secret"
FIXED_NOW = datetime(2024, 5, 1, 10, 20, 30, 123000, tzinfo=timezone.utc)

WRITE_OPERATIONS = {"write_file", "create_blob", "create_tree", "create_commit", "update_ref"}


class InMemoryProvider(ContentProvider):
    """ContentProvider keeping blobs, trees, commits and one branch in dicts.

    Every call is recorded in ``calls`` so tests can assert which operations
    ran. ``fail`` maps an operation name to an exception raised on its next
    call.
    """

    def __init__(self, files: Optional[Dict[str, object]] = None, branch: str = "main"):
        self._ids = itertools.count(1)
        self.blobs: Dict[str, str] = {}
        self.trees: Dict[str, Dict[str, str]] = {}
        self.commits: Dict[str, dict] = {}
        self.branch = branch
        self.calls: List[str] = []
        self.fail: Dict[str, Exception] = {}

        tree: Dict[str, str] = {"README.md": self._blob("# site\n")}
        for path, data in (files or {}).items():
            text = data if isinstance(data, str) else to_json_text(data)
            tree[path] = self._blob(text)
        tree_sha = self._store_tree(tree)
        self.head = self._store_commit("initial", tree_sha, None)
        self.initial_head = self.head

    # -- helpers --------------------------------------------------------

    def _sha(self, kind: str) -> str:
        return f"{kind}{next(self._ids):04d}"

    def _blob(self, content: str) -> str:
        sha = self._sha("blob")
        self.blobs[sha] = content
        return sha

    def _store_tree(self, mapping: Dict[str, str]) -> str:
        sha = self._sha("tree")
        self.trees[sha] = dict(mapping)
        return sha

    def _store_commit(self, message: str, tree_sha: str, parent: Optional[str]) -> str:
        sha = self._sha("commit")
        self.commits[sha] = {"message": message, "tree": tree_sha, "parent": parent}
        return sha

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise self.fail.pop(name)

    @property
    def head_tree(self) -> Dict[str, str]:
        return self.trees[self.commits[self.head]["tree"]]

    def file_text(self, path: str) -> Optional[str]:
        sha = self.head_tree.get(path)
        return None if sha is None else self.blobs[sha]

    def file_json(self, path: str):
        text = self.file_text(path)
        return None if text is None else json.loads(text)

    def new_commits(self) -> List[dict]:
        """Commits made after construction, oldest first."""
        chain = []
        sha = self.head
        while sha and sha != self.initial_head:
            chain.append(self.commits[sha])
            sha = self.commits[sha]["parent"]
        return list(reversed(chain))

    def writes(self) -> List[str]:
        return [c for c in self.calls if c in WRITE_OPERATIONS]

    def changed_paths(self, commit: dict) -> List[str]:
        parent_tree = self.trees[self.commits[commit["parent"]]["tree"]]
        tree = self.trees[commit["tree"]]
        paths = set(parent_tree) | set(tree)
        return sorted(p for p in paths if parent_tree.get(p) != tree.get(p))

    def move_branch(self, path: str, content: str) -> None:
        """Simulate someone else committing to the branch."""
        tree = dict(self.head_tree)
        tree[path] = self._blob(content)
        self.head = self._store_commit("concurrent edit", self._store_tree(tree), self.head)

    # -- ContentProvider ------------------------------------------------

    def read_file(self, path):
        self._record("read_file")
        return self.file_text(path)

    def write_file(self, path, content, message):
        self._record("write_file")
        tree = dict(self.head_tree)
        tree[path] = self._blob(content)
        self.head = self._store_commit(message, self._store_tree(tree), self.head)
        return self.head

    def get_branch_tip(self):
        self._record("get_branch_tip")
        return BranchTip(branch=self.branch, commit_sha=self.head, tree_sha=self.commits[self.head]["tree"])

    def list_tree_entries(self, tree_sha, recursive=True):
        self._record("list_tree_entries")
        return [TreeEntry(path=p, mode=BLOB_MODE, sha=s) for p, s in sorted(self.trees[tree_sha].items())]

    def create_blob(self, content):
        self._record("create_blob")
        return self._blob(content)

    def create_tree(self, base_tree_sha, entries):
        self._record("create_tree")
        mapping = dict(self.trees[base_tree_sha]) if base_tree_sha else {}
        for entry in entries:
            mapping[entry.path] = entry.sha
        return self._store_tree(mapping)

    def create_commit(self, message, tree_sha, parent_sha):
        self._record("create_commit")
        return self._store_commit(message, tree_sha, parent_sha)

    def update_ref(self, branch, commit_sha):
        self._record("update_ref")
        if branch != self.branch:
            raise UpstreamError(f"No such branch {branch}", status=422)
        if self.commits[commit_sha]["parent"] != self.head:
            raise RefUpdateRejected("Update is not a fast forward", status=422)
        self.head = commit_sha


def fixed_now():
    return FIXED_NOW


def make_config(**overrides) -> Config:
    values = dict(
        master_secret=MASTER_SECRET,
        provider=ProviderCredentials(token="gh-token", owner="owner", repo="site"),
        email_domain="example.com",
    )
    values.update(overrides)
    return Config(**values)


def account_records(vault: CredentialVault, *users) -> List[dict]:
    """users.json records for (username, password, role) tuples."""
    return [
        Account(
            username=username,
            credential=vault.encrypt(password),
            role=role,
            email=f"{username.lower()}@example.com",
            created_at="2024-01-01T00:00:00.000Z",
            is_default=username == "Admin",
        ).to_record()
        for username, password, role in users
    ]


STANDARD_USERS = (
    ("Admin", MASTER_SECRET, "admin"),
    ("alice", "alice-pass", "admin"),
    ("eddie", "eddie-pass", "editor"),
    ("vera", "vera-pass", "viewer"),
)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def vault(config):
    return CredentialVault(config.master_secret)


@pytest.fixture
def tokens(vault):
    return TokenService(vault.signing_secret)


@pytest.fixture
def provider():
    return InMemoryProvider()


@pytest.fixture
def seeded_provider(vault):
    return InMemoryProvider({USERS_PATH: account_records(vault, *STANDARD_USERS)})


@pytest.fixture
def accounts(seeded_provider, vault, config):
    return AccountStore(seeded_provider, vault, config, now=fixed_now)


@pytest.fixture
def orchestrator(seeded_provider, accounts):
    ids = (f"id{n}" for n in itertools.count(1))
    return BatchOrchestrator(seeded_provider, accounts, now=fixed_now, id_factory=lambda now: next(ids))


@pytest.fixture
def admin():
    return SessionUser(username="alice", role="admin")


@pytest.fixture
def editor():
    return SessionUser(username="eddie", role="editor")


@pytest.fixture
def viewer():
    return SessionUser(username="vera", role="viewer")


@pytest.fixture
def client(config, seeded_provider):
    from folio_web.app import create_app

    return TestClient(create_app(config, provider=seeded_provider))


@pytest.fixture
def auth_headers(tokens):
    def _headers(username: str, role: str) -> Dict[str, str]:
        token = tokens.issue(SessionUser(username=username, role=role))
        return {"Authorization": f"Bearer {token}"}

    return _headers
