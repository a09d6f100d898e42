import re

import pytest

from conftest import FIXED_NOW
from folio.batch.models import ITEM_COLLECTIONS, ContentChange, ItemChanges
from folio.batch.mutators import (
    apply_content_change,
    apply_item_changes,
    merge_patch,
    new_item_id,
    overlay_content,
)
from folio.utils.exceptions import ValidationError

PRODUCTS = ITEM_COLLECTIONS["products"]
STAMP = "2024-05-01T10:20:30.123Z"


def snapshot():
    return [
        {"id": "p1", "name": "Cotton Kurta", "price": "999", "createdAt": "2024-01-01T00:00:00.000Z"},
        {"id": "p2", "name": "Linen Shirt", "price": "1499", "createdAt": "2024-01-02T00:00:00.000Z"},
    ]


def sequential_ids():
    counter = iter(range(1, 100))
    return lambda now: f"new{next(counter)}"


def test_new_item_id_shape():
    item_id = new_item_id(FIXED_NOW)
    assert re.fullmatch(r"\d{13}[0-9a-z]{9}", item_id)
    assert item_id.startswith(str(int(FIXED_NOW.timestamp() * 1000)))
    assert len({new_item_id(FIXED_NOW) for _ in range(50)}) == 50


class TestMergePatch:
    def test_patch_fields_win(self):
        merged, changed = merge_patch({"id": "p1", "name": "a", "price": "1"}, {"price": "2"}, FIXED_NOW)
        assert changed
        assert merged == {"id": "p1", "name": "a", "price": "2", "updatedAt": STAMP}

    def test_server_fields_are_never_taken_from_patch(self):
        record = {"id": "p1", "name": "a", "createdAt": "old"}
        merged, changed = merge_patch(record, {"id": "evil", "createdAt": "new", "name": "b"}, FIXED_NOW)
        assert merged["id"] == "p1"
        assert merged["createdAt"] == "old"

    def test_no_op_does_not_stamp(self):
        record = {"id": "p1", "name": "a", "updatedAt": "earlier"}
        merged, changed = merge_patch(record, {"name": "a", "updatedAt": "later"}, FIXED_NOW)
        assert not changed
        assert merged is record


class TestApplyItemChanges:
    def test_create_assigns_id_and_timestamp(self):
        changes = ItemChanges(create=[{"id": "temp_1", "name": "Silk Saree", "price": "2999"}])
        mutation = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW, sequential_ids())
        created = mutation.items[-1]
        assert created == {"id": "new1", "name": "Silk Saree", "price": "2999", "createdAt": STAMP}
        assert mutation.result.created == 1
        assert mutation.changed

    def test_update_by_id(self):
        changes = ItemChanges(update=[{"id": "p2", "price": "1299"}])
        mutation = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW)
        assert mutation.items[1]["price"] == "1299"
        assert mutation.items[1]["updatedAt"] == STAMP
        assert mutation.items[0] == snapshot()[0]
        assert mutation.result.updated == 1

    def test_stale_update_is_dropped(self):
        changes = ItemChanges(update=[{"id": "gone", "price": "1"}])
        mutation = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW)
        assert not mutation.changed
        assert mutation.items == snapshot()
        assert mutation.result.skipped == 1

    def test_update_without_id_is_invalid(self):
        with pytest.raises(ValidationError):
            apply_item_changes(snapshot(), ItemChanges(update=[{"price": "1"}]), PRODUCTS, FIXED_NOW)

    def test_delete_and_placeholder_filtering(self):
        changes = ItemChanges(delete=["p1", "temp_123", "missing"])
        mutation = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW)
        assert [i["id"] for i in mutation.items] == ["p2"]
        assert mutation.result.deleted == 1
        assert mutation.result.skipped == 1

    def test_order_updates_then_creates_then_deletes(self):
        changes = ItemChanges(
            create=[{"name": "New"}],
            update=[{"id": "p1", "name": "Renamed"}],
            delete=["p1"],
        )
        mutation = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW, sequential_ids())
        assert [i["id"] for i in mutation.items] == ["p2", "new1"]

    def test_snapshot_is_not_mutated(self):
        original = snapshot()
        apply_item_changes(original, ItemChanges(update=[{"id": "p1", "name": "x"}]), PRODUCTS, FIXED_NOW)
        assert original == snapshot()

    def test_field_types_are_validated(self):
        changes = ItemChanges(create=[{"name": ["not", "a", "string"]}])
        with pytest.raises(ValidationError):
            apply_item_changes([], changes, PRODUCTS, FIXED_NOW)

    def test_extra_fields_are_kept(self):
        changes = ItemChanges(create=[{"image": "hero.jpg", "caption": "Festive"}])
        mutation = apply_item_changes([], changes, ITEM_COLLECTIONS["hero"], FIXED_NOW, sequential_ids())
        assert mutation.items[0]["caption"] == "Festive"

    def test_create_paired_with_delete_of_its_placeholder_nets_out(self):
        changes = ItemChanges(
            create=[{"id": "temp_1", "name": "Draft"}, {"id": "temp_2", "name": "Kept"}],
            delete=["temp_1"],
        )
        mutation = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW, sequential_ids())
        assert [i["name"] for i in mutation.items] == ["Cotton Kurta", "Linen Shirt", "Kept"]
        assert mutation.result.created == 1
        assert mutation.result.skipped == 0

        only_pair = ItemChanges(create=[{"id": "temp_1", "name": "Draft"}], delete=["temp_1"])
        assert not apply_item_changes(snapshot(), only_pair, PRODUCTS, FIXED_NOW).changed

    def test_replaying_updates_and_deletes_is_idempotent(self):
        changes = ItemChanges(update=[{"id": "p1", "price": "5"}], delete=["p2"])
        first = apply_item_changes(snapshot(), changes, PRODUCTS, FIXED_NOW)
        second = apply_item_changes(first.items, changes, PRODUCTS, FIXED_NOW)
        assert second.items == first.items
        assert not second.changed

    def test_replaying_creates_duplicates(self):
        changes = ItemChanges(create=[{"name": "Silk Saree"}])
        ids = sequential_ids()
        first = apply_item_changes([], changes, PRODUCTS, FIXED_NOW, ids)
        second = apply_item_changes(first.items, changes, PRODUCTS, FIXED_NOW, ids)
        assert [i["name"] for i in second.items] == ["Silk Saree", "Silk Saree"]
        assert second.items[0]["id"] != second.items[1]["id"]


class TestContent:
    def test_wholesale_replace(self):
        mutation = apply_content_change({"about": "old", "contact": "x"}, ContentChange(update={"about": "new"}), FIXED_NOW)
        assert mutation.items == {"about": "new", "updatedAt": STAMP}
        assert mutation.changed

    def test_identical_document_is_unchanged(self):
        document = {"about": "same", "updatedAt": "earlier"}
        mutation = apply_content_change(document, ContentChange(update={"about": "same"}), FIXED_NOW)
        assert not mutation.changed
        assert mutation.items is document

    def test_overlay_content_is_shallow(self):
        merged = overlay_content({"about": "a", "hero": {"title": "t", "sub": "s"}}, {"hero": {"title": "n"}}, FIXED_NOW)
        assert merged == {"about": "a", "hero": {"title": "n"}, "updatedAt": STAMP}
