"""
Collection mutators: pure functions from (snapshot, change-set) to a new
snapshot. No I/O happens here.

Item collections (products, gallery, hero) apply updates, then creates,
then deletes. The content document is replaced wholesale.
"""

from __future__ import annotations

import copy
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

from ..auth.models import parse_model
from ..utils.exceptions import ValidationError
from ..utils.logger import get_logger
from ..utils.timestamps import to_iso
from .models import CollectionResult, CollectionSpec, ContentChange, ItemChanges, Pending, parse_ref

logger = get_logger(__name__)

ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
ID_SUFFIX_LENGTH = 9

# Never taken from a patch
SERVER_FIELDS = ("id", "createdAt", "updatedAt")


def new_item_id(now: datetime) -> str:
    """Millisecond timestamp plus a random base36 suffix.

    The suffix keeps several creates inside one millisecond distinct.
    """
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))
    return f"{millis}{suffix}"


def merge_patch(record: Dict[str, Any], patch: Dict[str, Any], now: datetime) -> Tuple[Dict[str, Any], bool]:
    """Shallow overlay of ``patch`` onto ``record``.

    Precedence, field by field:
      - ``id`` and ``createdAt`` always keep the stored value
      - ``updatedAt`` is set by the server, and only when something changed
      - every other key present in the patch replaces the stored value
      - keys absent from the patch keep the stored value

    Returns the merged record and whether it differs from ``record``.
    """
    merged = dict(record)
    for key, value in patch.items():
        if key in SERVER_FIELDS:
            continue
        merged[key] = value
    if merged == record:
        return record, False
    merged["updatedAt"] = to_iso(now)
    return merged, True


def clean_fields(spec: CollectionSpec, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a create/update payload against the collection's field shape."""
    if not isinstance(raw, dict):
        raise ValidationError(f"{spec.name} entries must be objects")
    validated = parse_model(spec.fields, raw).model_dump()
    return {k: validated[k] for k in raw if k in validated and k not in SERVER_FIELDS}


@dataclass
class Mutation:
    items: Any
    result: CollectionResult = field(default_factory=CollectionResult)

    @property
    def changed(self) -> bool:
        return self.result.changed


def apply_item_changes(
    snapshot: List[Dict[str, Any]],
    changes: ItemChanges,
    spec: CollectionSpec,
    now: datetime,
    id_factory: Callable[[datetime], str] = new_item_id,
) -> Mutation:
    items = copy.deepcopy(snapshot)
    result = CollectionResult()
    stamp = to_iso(now)

    for raw in changes.update:
        ref = parse_ref(raw.get("id") if isinstance(raw, dict) else None)
        if ref is None:
            raise ValidationError(f"{spec.name} updates require an id")
        if isinstance(ref, Pending):
            logger.warning("Dropping update for unsaved draft", collection=spec.name, draft=ref.draft_id)
            result.skipped += 1
            continue
        patch = clean_fields(spec, raw)
        idx = next((i for i, item in enumerate(items) if item.get("id") == ref.id), -1)
        if idx == -1:
            # Stale update: the item is gone upstream
            result.skipped += 1
            continue
        items[idx], changed = merge_patch(items[idx], patch, now)
        if changed:
            result.updated += 1

    placeholders = set()
    for raw in changes.delete:
        ref = parse_ref(raw)
        if isinstance(ref, Pending):
            placeholders.add(ref.draft_id)

    cancelled = set()
    for raw in changes.create:
        ref = parse_ref(raw.get("id") if isinstance(raw, dict) else None)
        if isinstance(ref, Pending) and ref.draft_id in placeholders:
            # Created and deleted before saving: the pair nets out
            cancelled.add(ref.draft_id)
            continue
        fields = clean_fields(spec, raw)
        items.append({"id": id_factory(now), **fields, "createdAt": stamp})
        result.created += 1

    delete_ids = set()
    for raw in changes.delete:
        ref = parse_ref(raw)
        if ref is None or (isinstance(ref, Pending) and ref.draft_id in cancelled):
            continue
        if isinstance(ref, Pending):
            logger.warning("Ignoring delete of unsaved draft", collection=spec.name, draft=ref.draft_id)
            result.skipped += 1
            continue
        delete_ids.add(ref.id)
    if delete_ids:
        before = len(items)
        items = [item for item in items if item.get("id") not in delete_ids]
        result.deleted = before - len(items)

    result.changed = items != snapshot
    result.count = len(items)
    return Mutation(items=items, result=result)


def apply_content_change(document: Dict[str, Any], change: ContentChange, now: datetime) -> Mutation:
    """Replace the content document wholesale (last write wins)."""
    result = CollectionResult()
    if change.update is None:
        return Mutation(items=document, result=result)

    def comparable(doc: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in doc.items() if k != "updatedAt"}

    if comparable(change.update) == comparable(document):
        return Mutation(items=document, result=result)

    replacement = copy.deepcopy(change.update)
    replacement["updatedAt"] = to_iso(now)
    result.changed = True
    result.updated = 1
    return Mutation(items=replacement, result=result)


def overlay_content(document: Dict[str, Any], patch: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Single-file content edit: top-level keys of ``patch`` win."""
    merged = {**document, **patch}
    merged["updatedAt"] = to_iso(now)
    return merged
