"""本地副本存储测试"""

from datetime import datetime, timedelta, timezone

import pytest

from domains.core.exceptions import LabelNotFoundError, LocalStorageError, NoteNotFoundError
from domains.sync_hub.core import (
    LocalLabel,
    LocalNote,
    RemoteLabel,
    RemoteNote,
    SyncEvent,
    SyncStatus,
)

OWNER = "alice"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _note(replica, title="t", body="b", label_ids=(), note_id="n1"):
    return replica.insert_note(LocalNote(id=note_id, owner_id=OWNER, title=title, body=body), label_ids)


def _label(replica, name="Work", label_id="l1"):
    return replica.insert_label(LocalLabel(id=label_id, owner_id=OWNER, name=name))


def _synced_note(replica, note_id="n1", **kwargs):
    note = _note(replica, note_id=note_id, **kwargs)
    replica.mark_note_synced(OWNER, note.id, note.revision)
    return replica.get_note(OWNER, note.id)


class TestNoteWrites:

    def test_insert_is_pending_create(self, replica):
        note = _note(replica)
        assert note.sync_status is SyncStatus.PENDING_CREATE
        assert note.revision == 1
        assert note.created_at == note.updated_at

    def test_update_keeps_pending_create(self, replica):
        _note(replica)
        note = replica.update_note(OWNER, "n1", {"title": "new"})
        assert note.title == "new"
        assert note.body == "b"
        assert note.sync_status is SyncStatus.PENDING_CREATE
        assert note.revision == 2

    def test_update_synced_becomes_pending_update(self, replica):
        _synced_note(replica)
        note = replica.update_note(OWNER, "n1", {"body": "edited"})
        assert note.sync_status is SyncStatus.PENDING_UPDATE

    def test_update_ignores_unknown_fields(self, replica):
        _note(replica)
        note = replica.update_note(OWNER, "n1", {"owner_id": "mallory", "title": "x"})
        assert note.owner_id == OWNER

    def test_update_missing_or_deleted_raises(self, replica):
        with pytest.raises(NoteNotFoundError):
            replica.update_note(OWNER, "missing", {"title": "x"})
        _synced_note(replica)
        replica.delete_note(OWNER, "n1")
        with pytest.raises(NoteNotFoundError):
            replica.update_note(OWNER, "n1", {"title": "x"})

    def test_delete_unpushed_note_is_discarded(self, replica):
        _note(replica)
        assert replica.delete_note(OWNER, "n1") is None
        assert replica.get_note(OWNER, "n1", include_deleted=True) is None

    def test_delete_synced_note_leaves_tombstone(self, replica):
        _synced_note(replica)
        note = replica.delete_note(OWNER, "n1")
        assert note.is_deleted
        assert note.deleted_at is not None
        assert note.sync_status is SyncStatus.PENDING_DELETE
        assert note.status_before_delete is SyncStatus.SYNCED
        assert replica.get_note(OWNER, "n1") is None
        assert [n.id for n in replica.list_deleted_notes(OWNER)] == ["n1"]

    def test_delete_twice_is_noop(self, replica):
        _synced_note(replica)
        first = replica.delete_note(OWNER, "n1")
        second = replica.delete_note(OWNER, "n1")
        assert second.revision == first.revision

    def test_restore_before_delete_was_pushed(self, replica):
        _synced_note(replica)
        replica.delete_note(OWNER, "n1")
        note = replica.restore_note(OWNER, "n1")
        assert not note.is_deleted
        assert note.deleted_at is None
        assert note.sync_status is SyncStatus.SYNCED

    def test_restore_keeps_unpushed_edit(self, replica):
        _synced_note(replica)
        replica.update_note(OWNER, "n1", {"title": "edited"})
        replica.delete_note(OWNER, "n1")
        note = replica.restore_note(OWNER, "n1")
        assert note.sync_status is SyncStatus.PENDING_UPDATE
        assert note.title == "edited"

    def test_restore_after_delete_was_pushed(self, replica):
        _synced_note(replica)
        deleted = replica.delete_note(OWNER, "n1")
        replica.mark_note_synced(OWNER, "n1", deleted.revision)
        note = replica.restore_note(OWNER, "n1")
        assert note.sync_status is SyncStatus.PENDING_UPDATE

    def test_purge(self, replica):
        _note(replica)
        assert replica.purge_note(OWNER, "n1")
        assert not replica.purge_note(OWNER, "n1")

    def test_owner_isolation(self, replica):
        _note(replica)
        assert replica.get_note("bob", "n1") is None
        assert replica.list_notes("bob") == []


class TestMarkSynced:

    def test_revision_guard(self, replica):
        note = _note(replica)
        replica.update_note(OWNER, "n1", {"title": "during push"})
        assert not replica.mark_note_synced(OWNER, "n1", note.revision)
        assert replica.get_note(OWNER, "n1").sync_status is SyncStatus.PENDING_CREATE

    def test_ack_event_and_remote_timestamp(self, replica):
        note = _note(replica)
        assert replica.mark_note_synced(
            OWNER, "n1", note.revision, event=SyncEvent.CREATE_ACKNOWLEDGED, remote_updated_at=T0
        )
        synced = replica.get_note(OWNER, "n1")
        assert synced.sync_status is SyncStatus.SYNCED
        assert synced.updated_at == T0

    def test_record_failure_counts_rejections_only(self, replica):
        _note(replica)
        assert replica.record_note_failure(OWNER, "n1", "timeout", rejected=False) == 0
        assert replica.record_note_failure(OWNER, "n1", "bad label", rejected=True) == 1
        note = replica.get_note(OWNER, "n1")
        assert note.last_error == "bad label"
        assert note.sync_status is SyncStatus.PENDING_CREATE

    def test_local_edit_clears_rejections(self, replica):
        _note(replica)
        replica.record_note_failure(OWNER, "n1", "bad", rejected=True)
        note = replica.update_note(OWNER, "n1", {"title": "fixed"})
        assert note.rejection_count == 0
        assert note.last_error is None


class TestQueries:

    def test_search_is_case_insensitive_and_skips_tombstones(self, replica):
        _synced_note(replica, note_id="n1", title="Buy Milk")
        _note(replica, note_id="n2", title="other", body="milk and honey")
        _synced_note(replica, note_id="n3", title="milk gone")
        replica.delete_note(OWNER, "n3")
        assert {n.id for n in replica.search_notes(OWNER, "MILK")} == {"n1", "n2"}

    def test_search_escapes_wildcards(self, replica):
        _note(replica, note_id="n1", title="100% done")
        _note(replica, note_id="n2", title="1000 done")
        assert [n.id for n in replica.search_notes(OWNER, "0%")] == ["n1"]

    def test_notes_by_label(self, replica):
        _label(replica)
        _note(replica, note_id="n1", label_ids=["l1"])
        _note(replica, note_id="n2")
        assert [n.id for n in replica.notes_by_label(OWNER, "l1")] == ["n1"]

    def test_pending_notes_in_modification_order(self, replica):
        _note(replica, note_id="a")
        _note(replica, note_id="b")
        replica.update_note(OWNER, "a", {"title": "later"})
        assert [n.id for n in replica.pending_notes(OWNER)] == ["b", "a"]

    def test_links_to_unknown_labels_are_skipped(self, replica):
        note = _note(replica, label_ids=["nope"])
        assert note.label_ids == []


class TestLabels:

    def test_delete_unpushed_label_is_discarded(self, replica):
        _label(replica)
        assert replica.delete_label(OWNER, "l1") is None
        assert replica.get_label(OWNER, "l1", include_deleted=True) is None

    def test_delete_synced_label_unlinks_notes(self, replica):
        label = _label(replica)
        replica.mark_label_synced(OWNER, "l1", label.revision)
        _note(replica, label_ids=["l1"])

        deleted = replica.delete_label(OWNER, "l1")
        assert deleted.sync_status is SyncStatus.PENDING_DELETE
        assert replica.get_note(OWNER, "n1").label_ids == []
        assert replica.get_label(OWNER, "l1") is None
        assert replica.find_label_by_name(OWNER, "Work") is None

        assert replica.mark_label_synced(OWNER, "l1", deleted.revision)
        assert replica.get_label(OWNER, "l1", include_deleted=True) is None

    def test_update_missing_label_raises(self, replica):
        with pytest.raises(LabelNotFoundError):
            replica.update_label(OWNER, "missing", {"name": "x"})

    def test_update_synced_label(self, replica):
        label = _label(replica)
        replica.mark_label_synced(OWNER, "l1", label.revision)
        updated = replica.update_label(OWNER, "l1", {"name": "Home", "color": None})
        assert updated.name == "Home"
        assert updated.color == label.color
        assert updated.sync_status is SyncStatus.PENDING_UPDATE


class TestMerge:

    def test_apply_remote_note_inserts_synced(self, replica):
        replica.apply_remote_labels(OWNER, [RemoteLabel(id="l1", name="Work", created_at=T0)])
        applied = replica.apply_remote_note(OWNER, RemoteNote(
            id="r1", title="remote", created_at=T0, updated_at=T0, label_ids=["l1", "unknown"]
        ))
        assert applied
        note = replica.get_note(OWNER, "r1")
        assert note.sync_status is SyncStatus.SYNCED
        assert note.updated_at == T0
        assert note.label_ids == ["l1"]

    def test_apply_remote_tombstone(self, replica):
        _synced_note(replica)
        replica.apply_remote_note(OWNER, RemoteNote(
            id="n1", title="t", is_deleted=True, deleted_at=T0, updated_at=T0
        ))
        assert replica.get_note(OWNER, "n1") is None
        assert replica.get_note(OWNER, "n1", include_deleted=True).is_deleted

    def test_pending_note_is_protected(self, replica):
        _synced_note(replica)
        replica.update_note(OWNER, "n1", {"title": "local"})
        assert not replica.apply_remote_note(OWNER, RemoteNote(id="n1", title="remote", updated_at=T0))
        assert replica.get_note(OWNER, "n1").title == "local"

    def test_pending_note_overwritten_without_protection(self, replica):
        _synced_note(replica)
        before = replica.update_note(OWNER, "n1", {"title": "local"})
        assert replica.apply_remote_note(
            OWNER, RemoteNote(id="n1", title="remote", updated_at=T0), protect_pending=False
        )
        note = replica.get_note(OWNER, "n1")
        assert note.title == "remote"
        assert note.sync_status is SyncStatus.SYNCED
        assert note.revision > before.revision

    def test_apply_remote_labels_removes_vanished_synced_labels(self, replica):
        synced = _label(replica, name="Old", label_id="old")
        replica.mark_label_synced(OWNER, "old", synced.revision)
        _label(replica, name="Fresh", label_id="fresh")

        applied, removed, skipped = replica.apply_remote_labels(
            OWNER, [RemoteLabel(id="l2", name="Home", created_at=T0)]
        )
        assert (applied, removed, skipped) == (1, 1, 0)
        assert {label.id for label in replica.list_labels(OWNER)} == {"fresh", "l2"}

    def test_labels_synced_after_pull_are_kept(self, replica):
        old = _label(replica, name="Old", label_id="old")
        replica.mark_label_synced(OWNER, "old", old.revision)
        renamed = _label(replica, name="Renamed", label_id="renamed")
        replica.mark_label_synced(OWNER, "renamed", renamed.revision)
        snapshot = replica.synced_label_revisions(OWNER)
        assert snapshot == {"old": old.revision, "renamed": renamed.revision}

        # 拉取之后：新建并推送成功一个标签，另一个标签改名后推送成功
        late = _label(replica, name="Late", label_id="late")
        replica.mark_label_synced(OWNER, "late", late.revision)
        edited = replica.update_label(OWNER, "renamed", {"name": "Renamed again"})
        replica.mark_label_synced(OWNER, "renamed", edited.revision)

        applied, removed, skipped = replica.apply_remote_labels(OWNER, [], synced_before_pull=snapshot)

        assert (applied, removed, skipped) == (0, 1, 0)
        assert {label.id for label in replica.list_labels(OWNER)} == {"late", "renamed"}


class TestCursor:

    def test_first_advance_creates(self, replica):
        assert replica.get_cursor(OWNER, "global") is None
        assert replica.advance_cursor(OWNER, "global", T0, None)
        cursor = replica.get_cursor(OWNER, "global")
        assert cursor.last_synced_at == T0
        assert cursor.last_change_seen is None

    def test_never_moves_backwards(self, replica):
        replica.advance_cursor(OWNER, "global", T0, T0)
        assert not replica.advance_cursor(OWNER, "global", T0 - timedelta(seconds=1))
        assert replica.get_cursor(OWNER, "global").last_synced_at == T0

    def test_last_change_seen_is_monotonic(self, replica):
        replica.advance_cursor(OWNER, "global", T0, T0)
        replica.advance_cursor(OWNER, "global", T0 + timedelta(minutes=1), None)
        assert replica.get_cursor(OWNER, "global").last_change_seen == T0

    def test_scopes_are_independent(self, replica):
        replica.advance_cursor(OWNER, "global", T0)
        assert replica.get_cursor(OWNER, "label:l1") is None


class TestPendingCounts:

    def test_counts_and_parked(self, replica):
        _note(replica, note_id="a")
        _synced_note(replica, note_id="b")
        replica.update_note(OWNER, "b", {"title": "x"})
        replica.record_note_failure(OWNER, "a", "bad", rejected=True)
        replica.record_note_failure(OWNER, "a", "bad", rejected=True)

        counts = replica.pending_counts(OWNER, max_rejections=2)
        assert counts["notes"]["pending_create"] == 1
        assert counts["notes"]["pending_update"] == 1
        assert counts["notes"]["pending_delete"] == 0
        assert counts["notes"]["parked"] == 1
        assert counts["labels"]["parked"] == 0


def test_closed_replica_raises_local_storage_error(replica):
    replica.close()
    with pytest.raises(LocalStorageError):
        replica.get_note(OWNER, "n1")


def test_file_backed_replica_persists(tmp_path):
    from domains.sync_hub import ReplicaStore

    path = tmp_path / "nested" / "replica.db"
    with ReplicaStore(path) as first:
        _note(first)
    with ReplicaStore(path) as second:
        assert second.get_note(OWNER, "n1").title == "t"
