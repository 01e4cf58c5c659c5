"""设备端写入路径测试"""

import pytest

from domains.core.exceptions import (
    LabelNameConflictError,
    LabelNotFoundError,
    NoteNotFoundError,
    RemoteRejectionError,
    TransientNetworkError,
    ValidationError,
)
from domains.sync_hub import NotesRepository, SyncStatus

from tests.conftest import OWNER


class TestOfflineWrites:

    def test_writes_succeed_without_remote(self, offline_repo):
        note = offline_repo.create_note(OWNER, title="Buy milk")
        assert note.sync_status is SyncStatus.PENDING_CREATE
        updated = offline_repo.update_note(OWNER, note.id, body="2 litres")
        assert updated.body == "2 litres"
        assert updated.sync_status is SyncStatus.PENDING_CREATE

    def test_offline_writes_do_not_call_remote(self, replica, remote, connectivity):
        connectivity.set_online(False)
        repo = NotesRepository(replica, remote, connectivity)
        repo.create_note(OWNER, title="x")
        assert remote.calls == []

    def test_create_with_unknown_label_raises(self, offline_repo):
        with pytest.raises(LabelNotFoundError):
            offline_repo.create_note(OWNER, title="x", label_ids=["missing"])

    def test_update_missing_note_raises(self, offline_repo):
        with pytest.raises(NoteNotFoundError):
            offline_repo.update_note(OWNER, "missing", title="x")

    def test_add_and_remove_label(self, offline_repo):
        label = offline_repo.create_label(OWNER, "Work")
        note = offline_repo.create_note(OWNER, title="x")
        assert offline_repo.add_label(OWNER, note.id, label.id).label_ids == [label.id]
        assert offline_repo.add_label(OWNER, note.id, label.id).label_ids == [label.id]
        assert offline_repo.remove_label(OWNER, note.id, label.id).label_ids == []

    def test_delete_unpushed_note_returns_none(self, offline_repo):
        note = offline_repo.create_note(OWNER, title="x")
        assert offline_repo.delete_note(OWNER, note.id) is None
        assert offline_repo.list_deleted_notes(OWNER) == []

    def test_search_blank_query(self, offline_repo):
        offline_repo.create_note(OWNER, title="x")
        assert offline_repo.search_notes(OWNER, "   ") == []

    def test_label_name_rules(self, offline_repo):
        offline_repo.create_label(OWNER, "Work")
        with pytest.raises(LabelNameConflictError):
            offline_repo.create_label(OWNER, " Work ")
        with pytest.raises(ValidationError):
            offline_repo.create_label(OWNER, "  ")
        home = offline_repo.create_label(OWNER, "Home")
        with pytest.raises(LabelNameConflictError):
            offline_repo.update_label(OWNER, home.id, name="Work")
        assert offline_repo.update_label(OWNER, home.id, name="Home").name == "Home"


class TestImmediatePush:

    def test_create_is_pushed_and_synced(self, repo, server):
        note = repo.create_note(OWNER, title="Buy milk")
        assert note.sync_status is SyncStatus.SYNCED
        remote = server.notes.get_note(OWNER, note.id)
        assert remote.title == "Buy milk"
        assert note.updated_at == remote.updated_at

    def test_update_and_delete_are_pushed(self, repo, server):
        note = repo.create_note(OWNER, title="a")
        repo.update_note(OWNER, note.id, title="b")
        assert server.notes.get_note(OWNER, note.id).title == "b"

        deleted = repo.delete_note(OWNER, note.id)
        assert deleted.sync_status is SyncStatus.SYNCED
        assert server.notes.get_note(OWNER, note.id).is_deleted

    def test_network_failure_keeps_pending(self, repo, remote):
        remote.faults[("create_note", None)] = TransientNetworkError("notes-api", "timeout")
        note = repo.create_note(OWNER, title="x")
        assert note.sync_status is SyncStatus.PENDING_CREATE
        assert note.rejection_count == 0
        assert "timeout" in note.last_error

    def test_rejection_is_recorded(self, repo, remote):
        remote.faults[("create_note", None)] = RemoteRejectionError("bad", 400)
        note = repo.create_note(OWNER, title="x")
        assert note.sync_status is SyncStatus.PENDING_CREATE
        assert note.rejection_count == 1

        summary = repo.pending_summary(OWNER)
        assert summary["total_pending"] == 1
        assert summary["notes"]["pending_create"] == 1
        assert summary["errors"][0]["id"] == note.id

    def test_note_waits_for_unpushed_label(self, repo, remote):
        remote.faults[("create_label", None)] = TransientNetworkError("notes-api", "down")
        label = repo.create_label(OWNER, "Work")
        assert label.sync_status is SyncStatus.PENDING_CREATE

        note = repo.create_note(OWNER, title="x", label_ids=[label.id])
        assert note.sync_status is SyncStatus.PENDING_CREATE
        assert remote.calls_to("create_note") == []

    def test_label_lifecycle_is_pushed(self, repo, server):
        label = repo.create_label(OWNER, "Work", color="#112233")
        assert label.sync_status is SyncStatus.SYNCED
        repo.update_label(OWNER, label.id, name="Office")
        assert server.labels.get_label(OWNER, label.id).name == "Office"

        repo.delete_label(OWNER, label.id)
        assert repo.get_label(OWNER, label.id) is None
        assert server.labels.list_labels(OWNER) == []

    def test_restore_is_local_only(self, repo, server, remote):
        note = repo.create_note(OWNER, title="x")
        repo.delete_note(OWNER, note.id)
        calls = len(remote.calls)

        restored = repo.restore_note(OWNER, note.id)
        assert restored.sync_status is SyncStatus.PENDING_UPDATE
        assert len(remote.calls) == calls
        assert server.notes.get_note(OWNER, note.id).is_deleted
