"""
Tests for the reference lifecycle manager.

Covers creating, linking, editing, unlinking and deleting blocks across
workspaces, and the invariants that hold after every operation: references
are never more than one hop deep and shared content is never lost.
"""

import pytest

from kontextor.assembly import zone_metrics
from kontextor.exceptions import InvalidStateError, KontextorError, NotFoundError
from kontextor.models import Zone

BUDGETS = {"permanent": 1000, "stable": 1000, "working": 1000, "total": 3000}


def assert_one_hop(db, workspace_ids):
    for workspace_id in workspace_ids:
        for block in db.list_workspace_blocks(workspace_id):
            if block.is_linked:
                canonical = db.get_block(block.reference_id)
                assert canonical is None or not canonical.is_linked


class TestSharedEdits:

    def test_edit_through_linked_block_reaches_canonical(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Guideline v1", zone=Zone.PERMANENT)
        y = references.create_linked(w2, x.block_id)

        edited = references.edit(y.block_id, content="Guideline v2")

        assert edited.block_id == y.block_id
        assert edited.content == "Guideline v2"
        assert references.get_block(x.block_id).content == "Guideline v2"
        assert references.get_block(y.block_id).content == "Guideline v2"
        # The linked row itself never holds content
        assert db.get_block(y.block_id).content == ""
        assert db.get_block(y.block_id).reference_id == x.block_id

    def test_edit_canonical_visible_to_every_sibling(self, references, workspaces):
        w1, w2, w3 = workspaces
        x = references.create_block(w1, "Doc")
        y1 = references.create_linked(w2, x.block_id)
        y2 = references.create_linked(w3, x.block_id)

        references.edit(x.block_id, content="Doc v2", kind="guideline")

        for block_id in (y1.block_id, y2.block_id):
            block = references.get_block(block_id)
            assert block.content == "Doc v2"
            assert block.kind == "note"  # kind of a linked row is its own

        assert references.get_block(x.block_id).kind == "guideline"

    def test_edit_refreshes_hash_and_tokens(self, db, references, workspaces):
        x = references.create_block(workspaces[0], "abcd")
        references.edit(x.block_id, content="abcdefgh")

        stored = db.get_block(x.block_id)
        assert stored.token_count == 2
        assert stored.content_hash == references.find_duplicate("abcdefgh").content_hash

    def test_shared_edit_refreshes_linked_token_counts(self, db, references, workspaces):
        w1, w2, w3 = workspaces
        x = references.create_block(w1, "abcd", zone=Zone.STABLE)
        y = references.create_linked(w2, x.block_id)
        z = references.create_linked(w3, x.block_id)

        references.edit(y.block_id, content="a" * 400)

        for block_id in (x.block_id, y.block_id, z.block_id):
            assert db.get_block(block_id).token_count == 100
        metrics = zone_metrics(references.list_blocks(w2), BUDGETS)
        assert metrics["zones"]["STABLE"]["tokens"] == 100

        references.edit(x.block_id, content="a" * 8)
        assert db.get_block(z.block_id).token_count == 2

    def test_kind_only_edit_keeps_token_counts(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "a" * 40)
        y = references.create_linked(w2, x.block_id)

        references.edit(y.block_id, kind="guideline")

        assert db.get_block(y.block_id).token_count == 10

    def test_edit_missing_block(self, references):
        with pytest.raises(NotFoundError):
            references.edit("missing", content="x")


class TestLinking:

    def test_linked_block_defaults(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Shared guidance", kind="guideline", zone=Zone.STABLE)

        y = references.create_linked(w2, x.block_id)

        assert y.reference_id == x.block_id
        assert y.content == ""
        assert y.content_hash is None
        assert y.kind == "guideline"
        assert y.zone == Zone.STABLE
        assert y.token_count == x.token_count
        assert references.get_block(y.block_id).content == "Shared guidance"

    def test_link_zone_override_appends(self, references, workspaces):
        w1, w2, _ = workspaces
        references.create_block(w2, "existing", zone=Zone.WORKING)
        x = references.create_block(w1, "Shared", zone=Zone.PERMANENT)

        y = references.create_linked(w2, x.block_id, zone=Zone.WORKING)

        assert y.zone == Zone.WORKING
        assert y.order_key == 2.0

    def test_linking_to_linked_block_flattens(self, db, references, workspaces):
        w1, w2, w3 = workspaces
        x = references.create_block(w1, "Root")
        y = references.create_linked(w2, x.block_id)

        z = references.create_linked(w3, y.block_id)

        assert z.reference_id == x.block_id
        assert_one_hop(db, workspaces)

    def test_link_to_missing_block(self, db, references, workspaces):
        with pytest.raises(NotFoundError):
            references.create_linked(workspaces[1], "missing")
        assert db.list_workspace_blocks(workspaces[1]) == []

    def test_link_into_missing_workspace(self, references, workspaces):
        x = references.create_block(workspaces[0], "Root")
        with pytest.raises(NotFoundError):
            references.create_linked("no-such-workspace", x.block_id)

    def test_link_through_dangling_reference(self, db, references, workspaces):
        w1, w2, w3 = workspaces
        x = references.create_block(w1, "Root")
        y = references.create_linked(w2, x.block_id)
        with db.transaction():
            db.delete_block(x.block_id)

        with pytest.raises(NotFoundError):
            references.create_linked(w3, y.block_id)


class TestUnlink:

    def test_unlink_copies_content_and_detaches(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Guideline v1")
        y = references.create_linked(w2, x.block_id)

        unlinked = references.unlink(y.block_id)

        assert not unlinked.is_linked
        assert unlinked.content == "Guideline v1"
        assert unlinked.content_hash is not None

        references.edit(x.block_id, content="Guideline v2")
        assert references.get_block(y.block_id).content == "Guideline v1"
        references.edit(y.block_id, content="Local")
        assert references.get_block(x.block_id).content == "Guideline v2"

    def test_unlink_regular_block(self, references, workspaces):
        x = references.create_block(workspaces[0], "Own")
        with pytest.raises(InvalidStateError):
            references.unlink(x.block_id)

    def test_unlink_missing_block(self, references):
        with pytest.raises(NotFoundError):
            references.unlink("missing")


class TestDeletion:

    def test_destroy_workspace_promotes_references(self, db, references, workspaces):
        w1, w2, w3 = workspaces
        x = references.create_block(w1, "Doc")
        y1 = references.create_linked(w2, x.block_id)
        y2 = references.create_linked(w3, x.block_id)

        result = references.destroy_workspace(w1)

        assert result == {"promoted": 2, "deleted_blocks": 1, "deleted_snapshots": 0}
        assert db.get_workspace(w1) is None
        assert db.get_block(x.block_id) is None
        for block_id in (y1.block_id, y2.block_id):
            stored = db.get_block(block_id)
            assert stored.content == "Doc"
            assert not stored.is_linked
            assert stored.content_hash is not None

    def test_delete_canonical_promotes_in_every_workspace(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc")
        local = references.create_linked(w1, x.block_id)
        remote = references.create_linked(w2, x.block_id)

        assert references.delete_block(x.block_id) == 2

        assert db.get_block(local.block_id).content == "Doc"
        assert db.get_block(remote.block_id).content == "Doc"
        assert db.find_referencing([x.block_id]) == []

    def test_delete_linked_block_leaves_canonical(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc")
        y = references.create_linked(w2, x.block_id)

        assert references.delete_block(y.block_id) == 0
        assert db.get_block(y.block_id) is None
        assert references.get_block(x.block_id).content == "Doc"

    def test_delete_missing_block(self, references):
        assert references.delete_block("missing") == 0

    def test_clear_workspace_promotes_only_external_references(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc")
        references.create_linked(w1, x.block_id)
        remote = references.create_linked(w2, x.block_id)

        result = references.clear_workspace(w1)

        assert result == {"promoted": 1, "deleted_blocks": 2}
        assert db.get_workspace(w1) is not None
        assert db.list_workspace_blocks(w1) == []
        assert db.get_block(remote.block_id).content == "Doc"

    def test_no_shared_content_lost(self, db, references, workspaces):
        w1, w2, w3 = workspaces
        a = references.create_block(w1, "Alpha")
        b = references.create_block(w2, "Beta")
        links = [
            references.create_linked(w2, a.block_id),
            references.create_linked(w3, a.block_id),
            references.create_linked(w3, b.block_id),
            references.create_linked(w1, b.block_id),
        ]
        expected = {link.block_id: references.get_block(link.block_id).content for link in links}

        references.destroy_workspace(w2)
        references.delete_block(a.block_id)

        for block_id, content in expected.items():
            if block_id == links[0].block_id:
                # Owned by the destroyed workspace
                assert db.get_block(block_id) is None
                continue
            assert references.get_block(block_id).content == content
        assert_one_hop(db, workspaces)


class TestDanglingReferences:

    @pytest.fixture
    def dangling(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc")
        y = references.create_linked(w2, x.block_id)
        # Remove the canonical behind the manager's back
        with db.transaction():
            db.delete_block(x.block_id)
        return y

    def test_dangling_resolves_to_empty(self, references, workspaces, dangling, caplog):
        blocks = references.list_blocks(workspaces[1])
        assert [b.content for b in blocks] == [""]
        assert "Dangling reference" in caplog.text

    def test_edit_dangling_raises(self, references, dangling):
        with pytest.raises(NotFoundError):
            references.edit(dangling.block_id, content="x")

    def test_unlink_dangling_gives_empty_regular_block(self, references, dangling):
        block = references.unlink(dangling.block_id)
        assert not block.is_linked
        assert block.content == ""
        assert block.content_hash is None


class TestDuplicates:

    def test_duplicate_lookup_across_workspaces(self, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Same text")
        y = references.create_block(w2, "Same text")

        assert x.content_hash == y.content_hash
        assert references.find_duplicate("Same text", exclude_workspace_id=w2).block_id == x.block_id
        assert references.find_duplicate("Same text", exclude_workspace_id=w1).block_id == y.block_id
        assert len(references.find_duplicates("Same text")) == 2

    def test_duplicate_lookup_scoped_to_own_workspace(self, references, workspaces):
        w1, _, _ = workspaces
        references.create_block(w1, "Only here")
        assert references.find_duplicate("Only here", exclude_workspace_id=w1) is None

    def test_linked_and_empty_blocks_never_match(self, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Shared")
        references.create_linked(w2, x.block_id)
        references.create_block(w2, "")

        assert references.find_duplicate("Shared", exclude_workspace_id=w1) is None
        assert references.find_duplicates("") == []


class TestLocalAttributes:

    def test_create_appends_within_zone(self, references, workspaces):
        w1 = workspaces[0]
        first = references.create_block(w1, "A", zone=Zone.STABLE)
        second = references.create_block(w1, "B", zone=Zone.STABLE)
        other_zone = references.create_block(w1, "C", zone=Zone.WORKING)

        assert (first.order_key, second.order_key, other_zone.order_key) == (1.0, 2.0, 1.0)

    def test_move_keeps_link(self, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc", zone=Zone.PERMANENT)
        references.create_block(w2, "Local", zone=Zone.STABLE)
        y = references.create_linked(w2, x.block_id)

        moved = references.move(y.block_id, Zone.STABLE)

        assert moved.zone == Zone.STABLE
        assert moved.reference_id == x.block_id
        assert moved.order_key == 2.0
        assert references.get_block(x.block_id).zone == Zone.PERMANENT

    def test_reorder_and_list_order(self, references, workspaces):
        w1 = workspaces[0]
        a = references.create_block(w1, "A")
        b = references.create_block(w1, "B")
        references.reorder(b.block_id, 0.5)

        assert [blk.content for blk in references.list_blocks(w1)] == ["B", "A"]
        assert references.move_and_reorder(a.block_id, Zone.PERMANENT, 3.0).zone == Zone.PERMANENT
        assert [blk.zone for blk in references.list_blocks(w1)] == [Zone.PERMANENT, Zone.WORKING]

    def test_toggle_draft(self, references, workspaces):
        x = references.create_block(workspaces[0], "Idea")
        assert references.toggle_draft(x.block_id).is_draft
        assert not references.toggle_draft(x.block_id).is_draft

    def test_renumber_zone(self, references, workspaces):
        w1 = workspaces[0]
        a = references.create_block(w1, "A", zone=Zone.STABLE)
        b = references.create_block(w1, "B", zone=Zone.STABLE)
        c = references.create_block(w1, "C", zone=Zone.STABLE)
        references.reorder(c.block_id, 0.5)

        assert references.renumber_zone(w1, Zone.STABLE) == 3
        blocks = references.list_blocks(w1, Zone.STABLE)
        assert [blk.block_id for blk in blocks] == [c.block_id, a.block_id, b.block_id]
        assert [blk.order_key for blk in blocks] == [1.0, 2.0, 3.0]
        assert references.renumber_zone(w1, Zone.STABLE) == 0

    def test_crowded_zone_warns_until_renumbered(self, references, workspaces, caplog):
        w1 = workspaces[0]
        references.create_block(w1, "A", zone=Zone.STABLE)
        b = references.create_block(w1, "B", zone=Zone.STABLE)
        assert not references.zone_needs_renumber(w1, Zone.STABLE)

        references.reorder(b.block_id, 1.0 + 1e-12)

        assert references.zone_needs_renumber(w1, Zone.STABLE)
        assert "renumber_zone" in caplog.text

        caplog.clear()
        references.renumber_zone(w1, Zone.STABLE)
        references.create_block(w1, "C", zone=Zone.STABLE, order_key=2.5)
        assert not references.zone_needs_renumber(w1, Zone.STABLE)
        assert "renumber_zone" not in caplog.text

    def test_explicit_key_near_zero_warns(self, references, workspaces, caplog):
        references.create_block(workspaces[0], "Edge", order_key=1e-12)
        assert "renumber_zone" in caplog.text

    def test_reorder_relative(self, references, workspaces):
        w1 = workspaces[0]
        a = references.create_block(w1, "A", zone=Zone.STABLE)
        b = references.create_block(w1, "B", zone=Zone.STABLE)
        c = references.create_block(w1, "C", zone=Zone.WORKING)

        moved = references.reorder_relative(c.block_id, b.block_id, before=True)

        assert moved.zone == Zone.STABLE
        assert moved.order_key == 1.5
        assert [blk.content for blk in references.list_blocks(w1, Zone.STABLE)] == ["A", "C", "B"]

        references.reorder_relative(a.block_id, b.block_id, before=False)
        assert [blk.content for blk in references.list_blocks(w1, Zone.STABLE)] == ["C", "B", "A"]

    def test_reorder_relative_across_workspaces(self, references, workspaces):
        w1, w2, _ = workspaces
        a = references.create_block(w1, "A")
        b = references.create_block(w2, "B")
        with pytest.raises(InvalidStateError):
            references.reorder_relative(a.block_id, b.block_id)
        with pytest.raises(NotFoundError):
            references.reorder_relative(a.block_id, "missing")

    def test_reorder_to_index(self, references, workspaces):
        w1 = workspaces[0]
        references.create_block(w1, "A")
        references.create_block(w1, "B")
        c = references.create_block(w1, "C")
        s = references.create_block(w1, "S", zone=Zone.STABLE)

        assert references.reorder_to_index(c.block_id, 0).order_key == 0.5
        assert [blk.content for blk in references.list_blocks(w1, Zone.WORKING)] == ["C", "A", "B"]

        moved = references.reorder_to_index(s.block_id, 2, zone=Zone.WORKING)
        assert moved.zone == Zone.WORKING
        assert [blk.content for blk in references.list_blocks(w1, Zone.WORKING)] == ["C", "A", "S", "B"]


class TestCompression:

    def test_compress_regular_block(self, references, workspaces):
        x = references.create_block(workspaces[0], "a" * 40)

        compressed = references.compress(x.block_id, "a" * 8, strategy="manual")

        assert compressed.is_compressed
        assert compressed.content == "a" * 8
        assert compressed.token_count == 2
        assert compressed.original_token_count == 10
        assert compressed.compression_strategy == "manual"
        assert compressed.compressed_at is not None

    def test_compress_canonical_refreshes_linked_token_counts(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "a" * 40)
        y = references.create_linked(w2, x.block_id)

        references.compress(x.block_id, "a" * 4)

        assert db.get_block(y.block_id).token_count == 1
        assert references.get_block(y.block_id).content == "a" * 4

    def test_compress_linked_block(self, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc")
        y = references.create_linked(w2, x.block_id)
        with pytest.raises(InvalidStateError):
            references.compress(y.block_id, "D")


class TestAtomicity:

    def test_failed_operation_leaves_no_partial_writes(self, db, references, workspaces):
        w1 = workspaces[0]
        with pytest.raises(RuntimeError):
            with db.transaction():
                references.create_block(w1, "Will be rolled back")
                raise RuntimeError("boom")

        assert db.list_workspace_blocks(w1) == []
        assert not db.in_transaction

    def test_nested_failure_rolls_back_outer_work(self, db, references, workspaces):
        w1, w2, _ = workspaces
        x = references.create_block(w1, "Doc")
        with pytest.raises(KontextorError):
            with db.transaction():
                references.create_linked(w2, x.block_id)
                references.unlink(x.block_id)

        assert db.list_workspace_blocks(w2) == []

    def test_create_in_missing_workspace(self, references):
        with pytest.raises(NotFoundError):
            references.create_block("no-such-workspace", "x")

    def test_not_found_is_lookup_error(self, references):
        with pytest.raises(LookupError):
            references.move("missing", Zone.STABLE)
