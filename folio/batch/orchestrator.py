"""
Batch commit orchestrator.

Turns one batch request into at most one commit:

1. load the current snapshot of every collection named in the request
   (concurrently; a missing file is an empty collection)
2. apply the collection mutators in memory
3. drop files whose content did not change; if none changed, stop
   without touching the provider
4. read the branch tip, rebuild its tree with one new blob per changed
   file, commit on top of the tip and move the branch to the new commit

Nothing is retried from step 4 on. The ref update is the only step that
makes a batch visible, and the provider rejects it when the branch moved
underneath us.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List

from ..auth.accounts import AccountStore
from ..auth.guard import ACCOUNT_ADMIN, CONTENT_EDIT, ensure_role
from ..auth.models import SessionUser
from ..github.provider import BLOB_MODE, ContentProvider, TreeEntry, to_json_text
from ..utils.exceptions import RefUpdateRejected, UpstreamError
from ..utils.logger import get_logger
from ..utils.timestamps import to_iso, utc_now
from .models import (
    CONTENT_PATH,
    ITEM_COLLECTIONS,
    SECTION_PATHS,
    BatchRequest,
    BatchResult,
    CollectionResult,
)
from .mutators import Mutation, apply_content_change, apply_item_changes, new_item_id

logger = get_logger(__name__)

NOTHING_TO_COMMIT = "No changes to save"
COMMITTED = "All changes saved successfully in a single commit"


class BatchOrchestrator:
    def __init__(
        self,
        provider: ContentProvider,
        accounts: AccountStore,
        now: Callable[[], datetime] = utc_now,
        id_factory: Callable[[datetime], str] = new_item_id,
        max_workers: int = 5,
    ):
        self.provider = provider
        self.accounts = accounts
        self.now = now
        self.id_factory = id_factory
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _load_snapshot(self, section: str) -> Any:
        path = SECTION_PATHS[section]
        if section == "users":
            return self.accounts.load_persisted(strict=True)
        default: Any = {} if path == CONTENT_PATH else []
        data = self.provider.read_json(path, default)
        if not isinstance(data, type(default)):
            raise UpstreamError(f"Stored document {path} has an unexpected shape", reason="corrupt_document")
        return data

    def load_snapshots(self, sections: List[str]) -> Dict[str, Any]:
        """Read every section's current file; independent reads run in parallel."""
        if len(sections) == 1:
            return {sections[0]: self._load_snapshot(sections[0])}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(sections))) as pool:
            futures = {name: pool.submit(self._load_snapshot, name) for name in sections}
            return {name: future.result() for name, future in futures.items()}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _mutate(self, section: str, snapshot: Any, request: BatchRequest, acting: SessionUser, moment: datetime) -> Mutation:
        if section in ITEM_COLLECTIONS:
            return apply_item_changes(
                snapshot,
                getattr(request, section),
                ITEM_COLLECTIONS[section],
                moment,
                self.id_factory,
            )
        if section == "content":
            return apply_content_change(snapshot, request.content, moment)

        changes = request.users
        before = [a.to_record() for a in snapshot]
        accounts, skipped = self.accounts.apply_changes(snapshot, changes, acting)
        after = [a.to_record() for a in accounts]
        known = {a.username.lower() for a in snapshot}
        result = CollectionResult(
            changed=after != before,
            count=len(after),
            created=len(changes.create),
            updated=sum(1 for u in changes.update if u.username.lower() in known),
            deleted=sum(1 for name in changes.delete if name.lower() in known),
            skipped=skipped,
        )
        return Mutation(items=after, result=result)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit_files(self, files: Dict[str, Any], message: str) -> str:
        """Write ``files`` ({path: data}) as one commit on the branch tip."""
        tip = self.provider.get_branch_tip()
        replaced = set(files)
        entries = [
            entry
            for entry in self.provider.list_tree_entries(tip.tree_sha, recursive=True)
            if entry.path not in replaced
        ]
        for path in sorted(files):
            blob_sha = self.provider.create_blob(to_json_text(files[path]))
            entries.append(TreeEntry(path=path, mode=BLOB_MODE, sha=blob_sha))

        tree_sha = self.provider.create_tree(tip.tree_sha, entries)
        commit_sha = self.provider.create_commit(message, tree_sha, tip.commit_sha)
        self.provider.update_ref(tip.branch, commit_sha)
        logger.info(
            "Batch committed",
            branch=tip.branch,
            parent=tip.commit_sha,
            commit=commit_sha,
            files=sorted(files),
        )
        return commit_sha

    def submit(self, request: BatchRequest, acting: SessionUser) -> BatchResult:
        ensure_role(acting, CONTENT_EDIT)
        if request.touches_accounts():
            ensure_role(acting, ACCOUNT_ADMIN)

        sections = request.pending_sections()
        if not sections:
            return BatchResult(message=NOTHING_TO_COMMIT)

        snapshots = self.load_snapshots(sections)
        moment = self.now()
        files: Dict[str, Any] = {}
        results: Dict[str, CollectionResult] = {}
        for section in sections:
            mutation = self._mutate(section, snapshots[section], request, acting, moment)
            results[section] = mutation.result
            if mutation.changed:
                files[SECTION_PATHS[section]] = mutation.items

        if not files:
            logger.info("Batch produced no changes", sections=sections)
            return BatchResult(message=NOTHING_TO_COMMIT, results=results)

        message = f"Batch update via admin panel - {to_iso(moment)}"
        try:
            commit_sha = self.commit_files(files, message)
        except RefUpdateRejected:
            logger.error("Batch ref update rejected", files=sorted(files), by=acting.username)
            raise
        except UpstreamError as e:
            logger.error("Batch commit failed", files=sorted(files), error=str(e))
            raise UpstreamError(str(e), reason="persistence_failed", status=e.status) from e

        return BatchResult(committed=True, message=COMMITTED, commit_sha=commit_sha, results=results)
