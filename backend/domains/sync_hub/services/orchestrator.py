"""
同步编排器

一轮同步：拉取 -> 合并 -> 推送 -> 推进游标。

- 拉取：读取本地游标；向远端取本轮开始时间（服务端时钟）；
  无游标时全量快照，否则取 updated_at 严格大于 last_synced_at 的变更；再取标签列表
- 合并：先对齐标签（只删除拉取前已同步且之后未再修改的标签），再逐条覆盖笔记（字段、墓碑标记、标签关联），每条一个本地事务；
  本地仍待推送的实体在开启保护时跳过
- 推送：标签新建/修改 -> 笔记 -> 标签删除，顺序逐条推送；单条失败不影响后续
- 推进游标：last_synced_at = 本轮开始时间，last_change_seen = 拉取到的最大 updated_at

拉取阶段网络失败时本轮失败，游标不动；推送有失败时结果为 partial，游标照常推进。
推送阶段断网（探测器报告离线，或没有任何一条推送成功且失败全部可重试）时本轮失败，游标不动。
本地存储故障直接抛给调用方。取消只在阶段边界检查。
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from domains.core.exceptions import RemoteRejectionError, SyncInProgressError, TransientNetworkError
from domains.infra.logging import get_logger

from ..core.models import (
    GLOBAL_SCOPE,
    LocalLabel,
    LocalNote,
    PushFailure,
    RemoteLabel,
    RemoteNote,
    SyncOutcome,
    SyncReport,
    SyncScope,
    SyncStatus,
    utcnow,
)
from ..core.replica_store import ReplicaStore
from .connectivity import ConnectivityChecker
from .pusher import ChangePusher, PushError, operation_name
from .remote_client import RemoteNotesClient

logger = get_logger(__name__)


class SyncOrchestrator:
    """
    同步编排器

    Args:
        replica: 本地副本
        client: 远端客户端
        connectivity: 联网探测器
        protect_pending_on_pull: 合并时跳过本地待推送的实体
        max_rejections: 拒绝次数上限，达到后暂停推送（0 表示不暂停）
    """

    def __init__(
        self,
        replica: ReplicaStore,
        client: RemoteNotesClient,
        connectivity: ConnectivityChecker,
        protect_pending_on_pull: bool = True,
        max_rejections: int = 5,
    ):
        self.replica = replica
        self.client = client
        self.connectivity = connectivity
        self.protect_pending_on_pull = protect_pending_on_pull
        self.pusher = ChangePusher(replica, client, max_rejections)
        self._owner_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        replica: ReplicaStore,
        client: RemoteNotesClient,
        connectivity: ConnectivityChecker,
    ) -> "SyncOrchestrator":
        from domains.infra.settings import get_sync_settings

        settings = get_sync_settings()
        return cls(
            replica,
            client,
            connectivity,
            protect_pending_on_pull=settings.protect_pending_on_pull,
            max_rejections=settings.max_rejections,
        )

    def _owner_lock(self, owner_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._owner_locks.setdefault(owner_id, threading.Lock())

    def is_running(self, owner_id: str) -> bool:
        return self._owner_lock(owner_id).locked()

    # ==================== 入口 ====================

    def run_sync(
        self,
        owner_id: str,
        scope: SyncScope = GLOBAL_SCOPE,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncReport:
        """
        执行一轮同步

        Raises:
            SyncInProgressError: 该所有者已有同步在运行
            LocalStorageError: 本地副本读写失败
        """
        lock = self._owner_lock(owner_id)
        if not lock.acquire(blocking=False):
            raise SyncInProgressError(owner_id)
        try:
            return self._run(owner_id, scope, cancel_event)
        finally:
            lock.release()

    def _run(self, owner_id: str, scope: SyncScope, cancel_event: Optional[threading.Event]) -> SyncReport:
        report = SyncReport(owner_id=owner_id, scope=scope.key)
        log = logger.bind(owner_id=owner_id, scope=scope.key)

        def cancelled() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                log.info("sync_cancelled")
                return True
            return False

        if not self.connectivity.is_online():
            return self._finish(report, log, SyncOutcome.FAILURE, "offline")

        log.info("sync_started")

        # ---------- 拉取 ----------
        try:
            run_start, notes, labels, synced_labels = self._pull(owner_id, scope, report)
        except TransientNetworkError as e:
            log.warning("sync_pull_failed", error=str(e), retryable=True)
            return self._finish(report, log, SyncOutcome.FAILURE, str(e))
        except RemoteRejectionError as e:
            log.warning("sync_pull_rejected", error=str(e), status_code=e.status_code)
            return self._finish(report, log, SyncOutcome.FAILURE, str(e))

        log.info(
            "sync_pull_completed",
            full_snapshot=report.full_snapshot,
            notes=len(notes),
            labels=len(labels),
            run_start=run_start.isoformat(),
        )
        if cancelled():
            return self._finish(report, log, SyncOutcome.FAILURE, "cancelled")

        # ---------- 合并 ----------
        last_change_seen = self._merge(owner_id, notes, labels, synced_labels, report)
        log.info(
            "sync_merge_completed",
            pulled_notes=report.pulled_notes,
            pulled_labels=report.pulled_labels,
            removed_labels=report.removed_labels,
            skipped_pending=report.skipped_pending,
        )
        if cancelled():
            return self._finish(report, log, SyncOutcome.FAILURE, "cancelled")

        # ---------- 推送 ----------
        online = self._push(owner_id, report, log)
        log.info("sync_push_completed", pushed=report.pushed, failed=report.failed, parked=report.parked)
        if not online:
            log.warning("sync_push_aborted_offline", pushed=report.pushed, failed=report.failed)
            return self._finish(report, log, SyncOutcome.FAILURE, "network lost during push")
        if report.failures and report.pushed == 0 and all(f.retryable for f in report.failures):
            return self._finish(report, log, SyncOutcome.FAILURE, report.failures[-1].error)
        if cancelled():
            return self._finish(report, log, SyncOutcome.FAILURE, "cancelled")

        # ---------- 推进游标 ----------
        report.cursor_advanced = self.replica.advance_cursor(owner_id, scope.key, run_start, last_change_seen)

        outcome = SyncOutcome.PARTIAL if report.failures else SyncOutcome.SUCCESS
        return self._finish(report, log, outcome)

    def _finish(self, report: SyncReport, log, outcome: SyncOutcome, error: Optional[str] = None) -> SyncReport:
        report.outcome = outcome
        report.error = error
        report.finished_at = utcnow()
        log.info(
            "sync_completed",
            outcome=outcome.value,
            pulled_notes=report.pulled_notes,
            pushed=report.pushed,
            failed=report.failed,
            cursor_advanced=report.cursor_advanced,
            error=error,
        )
        return report

    # ==================== 阶段 ====================

    def _pull(self, owner_id: str, scope: SyncScope, report: SyncReport):
        cursor = self.replica.get_cursor(owner_id, scope.key)
        synced_labels = self.replica.synced_label_revisions(owner_id)
        remote_cursor = self.client.get_cursor(scope.label_id)
        report.started_at = remote_cursor.server_time

        if cursor is None:
            report.full_snapshot = True
            notes = self.client.full_snapshot(scope.label_id)
        else:
            notes = self.client.changes_since(cursor.last_synced_at, scope.label_id)
        labels = self.client.list_labels()
        return remote_cursor.server_time, notes, labels, synced_labels

    def _merge(
        self,
        owner_id: str,
        notes: List[RemoteNote],
        labels: List[RemoteLabel],
        synced_labels: Dict[str, int],
        report: SyncReport,
    ) -> Optional[datetime]:
        applied, removed, skipped = self.replica.apply_remote_labels(
            owner_id, labels, protect_pending=self.protect_pending_on_pull, synced_before_pull=synced_labels
        )
        report.pulled_labels = applied
        report.removed_labels = removed
        report.skipped_pending += skipped

        last_change_seen: Optional[datetime] = None
        for note in notes:
            if self.replica.apply_remote_note(owner_id, note, protect_pending=self.protect_pending_on_pull):
                report.pulled_notes += 1
            else:
                report.skipped_pending += 1
            if note.updated_at and (last_change_seen is None or note.updated_at > last_change_seen):
                last_change_seen = note.updated_at
        return last_change_seen

    def _push(self, owner_id: str, report: SyncReport, log) -> bool:
        """
        顺序推送所有待推送实体

        Returns:
            False 表示推送途中探测到离线，剩余实体留到下一轮
        """
        labels = self.replica.pending_labels(owner_id)
        label_upserts = [label for label in labels if label.sync_status is not SyncStatus.PENDING_DELETE]
        label_deletes = [label for label in labels if label.sync_status is SyncStatus.PENDING_DELETE]

        for label in label_upserts:
            if not self._push_label(label, report, log):
                return False
        for note in self.replica.pending_notes(owner_id):
            if not self._push_note(note, report, log):
                return False
        for label in label_deletes:
            if not self._push_label(label, report, log):
                return False
        return True

    def _push_note(self, note: LocalNote, report: SyncReport, log) -> bool:
        if self.pusher.is_parked(note):
            report.parked += 1
            return True
        try:
            if self.pusher.push_note(note):
                report.pushed += 1
        except PushError as e:
            count = self.pusher.record_note_failure(note, e)
            self._record_failure(report, log, "note", note.id, note.sync_status, e, count)
            return self._still_online(e)
        return True

    def _push_label(self, label: LocalLabel, report: SyncReport, log) -> bool:
        if self.pusher.is_parked(label):
            report.parked += 1
            return True
        try:
            if self.pusher.push_label(label):
                report.pushed += 1
        except PushError as e:
            count = self.pusher.record_label_failure(label, e)
            self._record_failure(report, log, "label", label.id, label.sync_status, e, count)
            return self._still_online(e)
        return True

    def _still_online(self, error: Exception) -> bool:
        """网络类失败后重新探测一次联网状态"""
        if not isinstance(error, TransientNetworkError):
            return True
        self.connectivity.invalidate()
        return self.connectivity.is_online()

    @staticmethod
    def _record_failure(report, log, entity_type, entity_id, status, error, rejection_count) -> None:
        retryable = isinstance(error, TransientNetworkError)
        report.failures.append(PushFailure(
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation_name(status),
            error=str(error),
            retryable=retryable,
        ))
        log.warning(
            "sync_push_item_failed" if retryable else "sync_push_item_rejected",
            entity=entity_type,
            entity_id=entity_id,
            operation=operation_name(status),
            rejection_count=rejection_count,
            error=str(error),
        )
