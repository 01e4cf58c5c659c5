"""同步编排器测试（进程内远端）"""

import threading

import pytest

from domains.core.exceptions import (
    LocalStorageError,
    RemoteRejectionError,
    SyncInProgressError,
    TransientNetworkError,
)
from domains.sync_hub import (
    NotesRepository,
    ReplicaStore,
    StaticConnectivity,
    SyncOrchestrator,
    SyncScope,
    SyncStatus,
)
from domains.sync_hub.core import SyncOutcome

from tests.conftest import OWNER
from tests.fakes import InProcessRemote


class Device:
    """一台设备：本地副本 + 仓库 + 编排器，共享同一个远端"""

    def __init__(self, server, online=False, **orchestrator_kwargs):
        self.replica = ReplicaStore(":memory:")
        self.remote = InProcessRemote(server, OWNER)
        self.connectivity = StaticConnectivity(online=True)
        # 仓库只在 online=True 时立即推送
        self.repo = NotesRepository(
            self.replica, self.remote, StaticConnectivity(online=online)
        )
        self.sync = SyncOrchestrator(self.replica, self.remote, self.connectivity, **orchestrator_kwargs)

    def run(self, scope=None):
        return self.sync.run_sync(OWNER, scope or SyncScope())

    def close(self):
        self.replica.close()


@pytest.fixture
def make_device(server):
    devices = []

    def factory(**kwargs):
        device = Device(server, **kwargs)
        devices.append(device)
        return device

    yield factory
    for device in devices:
        device.close()


class TestPullAndCursor:

    def test_first_sync_takes_full_snapshot(self, make_device, server):
        server.notes.create_note(OWNER, title="from web")
        server.notes.create_note("bob", title="not mine")
        device = make_device()

        report = device.run()

        assert report.outcome is SyncOutcome.SUCCESS
        assert report.full_snapshot
        assert report.pulled_notes == 1
        assert [n.title for n in device.repo.list_notes(OWNER)] == ["from web"]
        cursor = device.replica.get_cursor(OWNER, "global")
        assert cursor.last_synced_at == report.started_at

    def test_second_sync_is_incremental(self, make_device, server):
        server.notes.create_note(OWNER, title="old")
        device = make_device()
        device.run()

        server.notes.create_note(OWNER, title="new")
        report = device.run()

        assert not report.full_snapshot
        assert report.pulled_notes == 1
        assert {n.title for n in device.repo.list_notes(OWNER)} == {"old", "new"}

    def test_offline_run_fails_without_calls(self, make_device):
        device = make_device()
        device.connectivity.set_online(False)

        report = device.run()

        assert report.outcome is SyncOutcome.FAILURE
        assert report.error == "offline"
        assert device.remote.calls == []

    @pytest.mark.parametrize("fault", [
        TransientNetworkError("notes-api", "timeout"),
        RemoteRejectionError("bad scope", 404),
    ])
    def test_pull_failure_keeps_cursor_and_pending(self, make_device, fault):
        device = make_device()
        note = device.repo.create_note(OWNER, title="offline")
        device.remote.faults[("changes_since", None)] = fault
        device.remote.faults[("full_snapshot", None)] = fault

        report = device.run()

        assert report.outcome is SyncOutcome.FAILURE
        assert not report.cursor_advanced
        assert device.replica.get_cursor(OWNER, "global") is None
        assert device.repo.get_note(OWNER, note.id).sync_status is SyncStatus.PENDING_CREATE
        assert device.remote.calls_to("create_note") == []

    def test_label_scope_has_its_own_cursor(self, make_device, server):
        work = server.labels.create_label(OWNER, "Work")
        server.notes.create_note(OWNER, title="in scope", label_ids=[work.id])
        server.notes.create_note(OWNER, title="out of scope")
        device = make_device()

        report = device.run(SyncScope.for_label(work.id))

        assert report.scope == f"label:{work.id}"
        assert report.pulled_notes == 1
        assert device.replica.get_cursor(OWNER, f"label:{work.id}") is not None
        assert device.replica.get_cursor(OWNER, "global") is None


class TestPush:

    def test_offline_label_and_note_are_pushed_in_order(self, make_device, server):
        device = make_device()
        work = device.repo.create_label(OWNER, "Work")
        note = device.repo.create_note(OWNER, title="Buy milk", label_ids=[work.id])

        report = device.run()

        assert report.outcome is SyncOutcome.SUCCESS
        assert report.pushed == 2
        assert [c[0] for c in device.remote.calls if c[0].startswith("create")] == [
            "create_label", "create_note"
        ]
        remote_note = server.notes.get_note(OWNER, note.id)
        assert remote_note.title == "Buy milk"
        assert remote_note.label_ids == [work.id]
        assert device.repo.get_note(OWNER, note.id).sync_status is SyncStatus.SYNCED
        assert device.repo.get_label(OWNER, work.id).sync_status is SyncStatus.SYNCED
        assert device.replica.get_cursor(OWNER, "global").last_synced_at == report.started_at

    def test_partial_failure_is_isolated(self, make_device, server):
        device = make_device()
        ok1 = device.repo.create_note(OWNER, title="one")
        bad = device.repo.create_note(OWNER, title="two")
        ok2 = device.repo.create_note(OWNER, title="three")
        device.remote.faults[("create_note", bad.id)] = RemoteRejectionError("rejected", 400, bad.id)

        report = device.run()

        assert report.outcome is SyncOutcome.PARTIAL
        assert report.pushed == 2
        assert report.failed == 1
        failure = report.failures[0]
        assert (failure.entity_id, failure.operation, failure.retryable) == (bad.id, "create", False)
        assert report.cursor_advanced
        assert device.repo.get_note(OWNER, bad.id).rejection_count == 1
        for note in (ok1, ok2):
            assert device.repo.get_note(OWNER, note.id).sync_status is SyncStatus.SYNCED

    def test_lost_create_response_is_replayed_and_reconciled(self, make_device, server):
        device = make_device()
        note = device.repo.create_note(OWNER, title="draft")
        device.remote.lose_response.add("create_note")

        first = device.run()
        assert first.outcome is SyncOutcome.FAILURE
        assert first.failures[0].retryable
        assert not first.cursor_advanced
        assert server.notes.get_note(OWNER, note.id).title == "draft"

        device.repo.update_note(OWNER, note.id, title="final")
        second = device.run()

        assert second.outcome is SyncOutcome.SUCCESS
        assert server.notes.count_notes(OWNER) == 1
        assert server.notes.get_note(OWNER, note.id).title == "final"
        local = device.repo.get_note(OWNER, note.id)
        assert local.sync_status is SyncStatus.SYNCED
        assert local.title == "final"

    def test_rejected_entity_is_parked_until_edited(self, make_device):
        device = make_device(max_rejections=2)
        note = device.repo.create_note(OWNER, title="x")
        device.remote.faults[("create_note", note.id)] = RemoteRejectionError("no", 400, note.id)

        device.run()
        device.run()
        attempts = len(device.remote.calls_to("create_note"))
        report = device.run()

        assert report.parked == 1
        assert report.outcome is SyncOutcome.SUCCESS
        assert len(device.remote.calls_to("create_note")) == attempts

        del device.remote.faults[("create_note", note.id)]
        device.repo.update_note(OWNER, note.id, title="fixed")
        report = device.run()
        assert report.pushed == 1
        assert device.repo.get_note(OWNER, note.id).sync_status is SyncStatus.SYNCED

    def test_transient_failures_are_not_parked(self, make_device):
        device = make_device(max_rejections=1)
        note = device.repo.create_note(OWNER, title="x")
        device.remote.faults[("create_note", note.id)] = TransientNetworkError("notes-api", "503")

        device.run()
        report = device.run()

        assert report.parked == 0
        assert report.failed == 1

    def _lose_network_after_pull(self, device, checker_goes_offline):
        fetch_labels = device.remote.list_labels

        def list_labels_then_disconnect():
            labels = fetch_labels()
            device.remote.offline = True
            if checker_goes_offline:
                device.connectivity.set_online(False)
            return labels

        device.remote.list_labels = list_labels_then_disconnect

    def test_network_lost_during_push_fails_the_run(self, make_device):
        device = make_device()
        notes = [device.repo.create_note(OWNER, title=t) for t in ("a", "b", "c")]
        self._lose_network_after_pull(device, checker_goes_offline=False)

        report = device.run()

        assert report.outcome is SyncOutcome.FAILURE
        assert report.pushed == 0
        assert report.failed == 3
        assert not report.cursor_advanced
        assert device.replica.get_cursor(OWNER, "global") is None
        for note in notes:
            assert device.repo.get_note(OWNER, note.id).sync_status is SyncStatus.PENDING_CREATE

    def test_push_stops_once_connectivity_reports_offline(self, make_device):
        device = make_device()
        for title in ("a", "b", "c"):
            device.repo.create_note(OWNER, title=title)
        self._lose_network_after_pull(device, checker_goes_offline=True)

        report = device.run()

        assert report.outcome is SyncOutcome.FAILURE
        assert len(device.remote.calls_to("create_note")) == 1
        assert report.failed == 1
        assert device.replica.get_cursor(OWNER, "global") is None
        assert len(device.replica.pending_notes(OWNER)) == 3

    def test_single_transient_failure_is_still_partial(self, make_device, server):
        device = make_device()
        ok1 = device.repo.create_note(OWNER, title="one")
        flaky = device.repo.create_note(OWNER, title="two")
        ok2 = device.repo.create_note(OWNER, title="three")
        device.remote.faults[("create_note", flaky.id)] = TransientNetworkError("notes-api", "503")

        report = device.run()

        assert report.outcome is SyncOutcome.PARTIAL
        assert report.pushed == 2
        assert report.cursor_advanced
        assert device.repo.get_note(OWNER, flaky.id).sync_status is SyncStatus.PENDING_CREATE
        for note in (ok1, ok2):
            assert device.repo.get_note(OWNER, note.id).sync_status is SyncStatus.SYNCED


class TestConvergence:

    def test_two_devices_converge(self, make_device):
        a, b = make_device(), make_device()
        note = a.repo.create_note(OWNER, title="v1")
        a.run()
        b.run()
        assert b.repo.get_note(OWNER, note.id).title == "v1"

        b.repo.update_note(OWNER, note.id, title="v2")
        b.run()
        a.run()

        assert a.repo.get_note(OWNER, note.id).title == "v2"
        assert a.repo.get_note(OWNER, note.id).sync_status is SyncStatus.SYNCED

    def test_tombstone_propagates(self, make_device, server):
        a, b = make_device(), make_device()
        note = a.repo.create_note(OWNER, title="doomed")
        a.run()
        b.run()

        a.repo.delete_note(OWNER, note.id)
        a.run()
        b.run()

        assert server.notes.get_note(OWNER, note.id).is_deleted
        assert b.repo.get_note(OWNER, note.id) is None
        assert [n.id for n in b.repo.list_deleted_notes(OWNER)] == [note.id]

    def test_restore_round_trip(self, make_device, server):
        a, b = make_device(), make_device()
        note = a.repo.create_note(OWNER, title="keep")
        a.run()
        a.repo.delete_note(OWNER, note.id)
        a.run()
        b.run()
        assert b.repo.get_note(OWNER, note.id) is None

        a.repo.restore_note(OWNER, note.id)
        a.run()
        b.run()

        assert not server.notes.get_note(OWNER, note.id).is_deleted
        assert b.repo.get_note(OWNER, note.id).title == "keep"

    def test_label_deleted_elsewhere_is_removed(self, make_device):
        a, b = make_device(), make_device()
        work = a.repo.create_label(OWNER, "Work")
        note = a.repo.create_note(OWNER, title="x", label_ids=[work.id])
        a.run()
        b.run()
        assert b.repo.get_note(OWNER, note.id).label_ids == [work.id]

        a.repo.delete_label(OWNER, work.id)
        a.run()
        report = b.run()

        assert report.removed_labels == 1
        assert b.repo.list_labels(OWNER) == []
        assert b.repo.get_note(OWNER, note.id).label_ids == []

    def test_label_created_while_run_is_in_flight_survives_merge(self, make_device, server):
        device = make_device(online=True)
        note = device.repo.create_note(OWNER, title="x")
        device.run()

        created = {}
        fetch_labels = device.remote.list_labels

        def list_labels_then_label_note():
            labels = fetch_labels()
            # 用户在拉取之后、合并之前建标签并关联，立即推送成功
            label = device.repo.create_label(OWNER, "Work")
            device.repo.add_label(OWNER, note.id, label.id)
            created["label"] = label
            return labels

        device.remote.list_labels = list_labels_then_label_note
        report = device.run()

        work = created["label"]
        assert report.removed_labels == 0
        assert device.repo.get_label(OWNER, work.id).sync_status is SyncStatus.SYNCED
        assert device.repo.get_note(OWNER, note.id).label_ids == [work.id]
        assert server.labels.get_label(OWNER, work.id).note_count == 1


class TestPendingProtection:

    def _diverge(self, device, server):
        note = device.repo.create_note(OWNER, title="base")
        device.run()
        server.notes.update_note(OWNER, note.id, {"title": "remote edit"})
        device.repo.update_note(OWNER, note.id, title="local edit")
        return note

    def test_pending_local_edit_wins(self, make_device, server):
        device = make_device()
        note = self._diverge(device, server)

        report = device.run()

        assert report.skipped_pending == 1
        assert device.repo.get_note(OWNER, note.id).title == "local edit"
        assert server.notes.get_note(OWNER, note.id).title == "local edit"

    def test_remote_wins_without_protection(self, make_device, server):
        device = make_device(protect_pending_on_pull=False)
        note = self._diverge(device, server)

        report = device.run()

        assert report.skipped_pending == 0
        local = device.repo.get_note(OWNER, note.id)
        assert local.title == "remote edit"
        assert local.sync_status is SyncStatus.SYNCED
        assert server.notes.get_note(OWNER, note.id).title == "remote edit"


class TestRunControl:

    def test_concurrent_run_for_same_owner_is_refused(self, orchestrator):
        lock = orchestrator._owner_lock(OWNER)
        lock.acquire()
        try:
            assert orchestrator.is_running(OWNER)
            with pytest.raises(SyncInProgressError):
                orchestrator.run_sync(OWNER)
        finally:
            lock.release()
        assert not orchestrator.is_running(OWNER)

    def test_cancelled_run_does_not_advance_cursor(self, orchestrator, replica, repo, connectivity):
        connectivity.set_online(False)
        repo.create_note(OWNER, title="x")
        connectivity.set_online(True)
        cancel = threading.Event()
        cancel.set()

        report = orchestrator.run_sync(OWNER, cancel_event=cancel)

        assert report.cancelled
        assert report.outcome is SyncOutcome.FAILURE
        assert report.error == "cancelled"
        assert replica.get_cursor(OWNER, "global") is None
        assert report.pushed == 0

    def test_local_storage_error_propagates(self, orchestrator, replica):
        replica.close()
        with pytest.raises(LocalStorageError):
            orchestrator.run_sync(OWNER)
        assert not orchestrator.is_running(OWNER)

    def test_report_serializes(self, orchestrator):
        data = orchestrator.run_sync(OWNER).to_dict()
        assert data["outcome"] == "success"
        assert data["scope"] == "global"
        assert data["failures"] == []
