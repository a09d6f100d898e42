"""
Client-side change buffer.

Collects the operator's edits between saves and flattens them into the
net batch payload the server expects. Items created in the session are
``Pending`` until the batch is committed; the server assigns real ids.

Rules:
- deleting a pending item cancels its create; nothing is sent for it
- updates to the same item are shallow-merged, newest fields win
- an update to a pending item folds into its create
- a buffer saved more than 24 hours ago is discarded on load
- re-creating a user deleted in the same session sends an update instead
"""

from __future__ import annotations

import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from ..batch.models import ITEM_COLLECTIONS, ItemRef, Pending, Persisted, parse_ref
from ..utils.exceptions import ValidationError
from ..utils.logger import get_logger
from ..utils.timestamps import to_iso, utc_now

logger = get_logger(__name__)

STALE_AFTER = timedelta(hours=24)


class ChangeAccumulator:
    def __init__(self, now: Callable[[], datetime] = utc_now):
        self.now = now
        self.clear()

    def clear(self) -> None:
        # Insertion order of drafts is the order creates are sent in
        self._drafts: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in ITEM_COLLECTIONS}
        self._updates: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in ITEM_COLLECTIONS}
        self._deletes: Dict[str, List[str]] = {name: [] for name in ITEM_COLLECTIONS}
        self._content: Optional[Dict[str, Any]] = None
        self._user_creates: Dict[str, Dict[str, Any]] = {}
        self._user_updates: Dict[str, Dict[str, Any]] = {}
        self._user_deletes: List[str] = []

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in ITEM_COLLECTIONS:
            raise ValidationError(f"Unknown collection: {collection}")

    @staticmethod
    def _as_ref(ref: Any) -> ItemRef:
        if isinstance(ref, (Pending, Persisted)):
            return ref
        parsed = parse_ref(ref)
        if parsed is None:
            raise ValidationError("An item id is required")
        return parsed

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def stage_create(self, collection: str, fields: Dict[str, Any]) -> Pending:
        self._check_collection(collection)
        draft = Pending(f"{int(self.now().timestamp() * 1000)}{secrets.token_hex(3)}")
        self._drafts[collection][draft.draft_id] = {k: v for k, v in fields.items() if k != "id"}
        return draft

    def stage_update(self, collection: str, ref: Any, fields: Dict[str, Any]) -> None:
        self._check_collection(collection)
        ref = self._as_ref(ref)
        patch = {k: v for k, v in fields.items() if k != "id"}
        if isinstance(ref, Pending):
            draft = self._drafts[collection].get(ref.draft_id)
            if draft is None:
                raise ValidationError(f"Unknown draft: {ref.wire_id}")
            draft.update(patch)
            return
        if ref.id in self._deletes[collection]:
            logger.warning("Ignoring update to an item queued for deletion", collection=collection, id=ref.id)
            return
        self._updates[collection].setdefault(ref.id, {}).update(patch)

    def stage_delete(self, collection: str, ref: Any) -> None:
        self._check_collection(collection)
        ref = self._as_ref(ref)
        if isinstance(ref, Pending):
            self._drafts[collection].pop(ref.draft_id, None)
            return
        self._updates[collection].pop(ref.id, None)
        if ref.id not in self._deletes[collection]:
            self._deletes[collection].append(ref.id)

    # ------------------------------------------------------------------
    # Content and users
    # ------------------------------------------------------------------

    def stage_content(self, document: Dict[str, Any]) -> None:
        self._content = dict(document)

    def stage_user_create(self, username: str, password: str, role: str = "editor", email: Optional[str] = None) -> None:
        key = username.lower()
        if key in self._user_deletes:
            # The stored account still exists: re-creating it means overwriting it
            self._user_deletes.remove(key)
            self._user_updates[key] = {"username": username, "password": password, "role": role}
            if email:
                self._user_updates[key]["email"] = email
            return
        record: Dict[str, Any] = {"username": username, "password": password, "role": role}
        if email:
            record["email"] = email
        self._user_creates[key] = record

    def stage_user_update(self, username: str, **fields: Any) -> None:
        key = username.lower()
        patch = {k: v for k, v in fields.items() if v is not None}
        if key in self._user_creates:
            self._user_creates[key].update(patch)
            return
        self._user_updates.setdefault(key, {"username": username}).update(patch)

    def stage_user_delete(self, username: str) -> None:
        key = username.lower()
        if self._user_creates.pop(key, None) is not None:
            return
        self._user_updates.pop(key, None)
        if key not in self._user_deletes:
            self._user_deletes.append(key)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def pending_count(self) -> int:
        count = 0
        for name in ITEM_COLLECTIONS:
            count += len(self._drafts[name]) + len(self._updates[name]) + len(self._deletes[name])
        if self._content is not None:
            count += 1
        count += len(self._user_creates) + len(self._user_updates) + len(self._user_deletes)
        return count

    def is_empty(self) -> bool:
        return self.pending_count() == 0

    def to_batch_payload(self) -> Dict[str, Any]:
        """The net change-set, one entry per section with pending work."""
        payload: Dict[str, Any] = {}
        for name in ITEM_COLLECTIONS:
            section = {
                "create": [dict(fields) for fields in self._drafts[name].values()],
                "update": [{"id": item_id, **patch} for item_id, patch in self._updates[name].items()],
                "delete": list(self._deletes[name]),
            }
            if any(section.values()):
                payload[name] = section
        if self._content is not None:
            payload["content"] = {"update": dict(self._content)}
        users = {
            "create": list(self._user_creates.values()),
            "update": list(self._user_updates.values()),
            "delete": list(self._user_deletes),
        }
        if any(users.values()):
            payload["users"] = users
        return payload

    def overlay(self, collection: str, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """What the operator should see: stored items with pending edits applied."""
        self._check_collection(collection)
        deleted = set(self._deletes[collection])
        updates = self._updates[collection]
        view = [
            {**item, **updates.get(item.get("id"), {})}
            for item in items
            if item.get("id") not in deleted
        ]
        for draft_id, fields in self._drafts[collection].items():
            view.append({**fields, "id": Pending(draft_id).wire_id})
        return view

    # ------------------------------------------------------------------
    # Session recovery
    # ------------------------------------------------------------------

    def dumps(self) -> str:
        return json.dumps(
            {
                "savedAt": to_iso(self.now()),
                "drafts": self._drafts,
                "updates": self._updates,
                "deletes": self._deletes,
                "content": self._content,
                "users": {
                    "create": self._user_creates,
                    "update": self._user_updates,
                    "delete": self._user_deletes,
                },
            }
        )

    @classmethod
    def loads(cls, text: Optional[str], now: Callable[[], datetime] = utc_now) -> "ChangeAccumulator":
        """Restore a saved buffer; a missing, unreadable or stale one yields an empty buffer."""
        acc = cls(now=now)
        if not text:
            return acc
        try:
            state = json.loads(text)
            saved_at = datetime.fromisoformat(state["savedAt"].replace("Z", "+00:00"))
            if saved_at.tzinfo is None:
                saved_at = saved_at.replace(tzinfo=timezone.utc)
            if now() - saved_at > STALE_AFTER:
                logger.info("Discarding stale saved changes", saved_at=state["savedAt"])
                return acc

            for name in ITEM_COLLECTIONS:
                acc._drafts[name].update(state.get("drafts", {}).get(name, {}))
                acc._updates[name].update(state.get("updates", {}).get(name, {}))
                acc._deletes[name].extend(state.get("deletes", {}).get(name, []))
            acc._content = state.get("content")
            users = state.get("users") or {}
            acc._user_creates.update(users.get("create", {}))
            acc._user_updates.update(users.get("update", {}))
            acc._user_deletes.extend(users.get("delete", []))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Discarding unreadable saved changes", error=str(e))
            return cls(now=now)
        return acc
