"""
变更推送

把单个待推送实体发送到远端，成功后按 revision 条件标记为 synced。
写入路径（联网时立即推送）和同步编排器的推送阶段共用。

创建的重放不会修改远端已有内容，所以当远端返回的内容与本地不一致时
（例如上一次创建已成功但响应丢失，之后本地又修改过），紧接着补一次更新。
"""

from typing import Optional

from domains.core.exceptions import RemoteRejectionError, TransientNetworkError
from domains.infra.logging import get_logger

from ..core.models import LocalLabel, LocalNote, RemoteNote, SyncEvent, SyncStatus
from ..core.replica_store import ReplicaStore
from .remote_client import RemoteNotesClient

logger = get_logger(__name__)

# 写入后立即推送成功时使用的确认事件
_ACK_EVENTS = {
    SyncStatus.PENDING_CREATE: SyncEvent.CREATE_ACKNOWLEDGED,
    SyncStatus.PENDING_UPDATE: SyncEvent.UPDATE_ACKNOWLEDGED,
    SyncStatus.PENDING_DELETE: SyncEvent.DELETE_ACKNOWLEDGED,
}

PushError = (TransientNetworkError, RemoteRejectionError)


def operation_name(status: SyncStatus) -> str:
    return {
        SyncStatus.PENDING_CREATE: "create",
        SyncStatus.PENDING_UPDATE: "update",
        SyncStatus.PENDING_DELETE: "delete",
    }.get(status, "none")


def _note_differs(remote: RemoteNote, note: LocalNote) -> bool:
    return (
        remote.title != note.title
        or remote.body != note.body
        or sorted(remote.label_ids) != sorted(note.label_ids)
        or remote.is_deleted
    )


class ChangePusher:
    """单实体推送器"""

    def __init__(self, replica: ReplicaStore, client: RemoteNotesClient, max_rejections: int = 5):
        self.replica = replica
        self.client = client
        self.max_rejections = max_rejections

    def is_parked(self, entity) -> bool:
        """拒绝次数达到上限的实体暂停推送，直到用户在本地修改它"""
        return self.max_rejections > 0 and entity.rejection_count >= self.max_rejections

    # ==================== 笔记 ====================

    def push_note(self, note: LocalNote, immediate: bool = False) -> bool:
        """
        推送一条笔记

        Returns:
            True 表示已标记为 synced；False 表示推送期间本地又被修改，保持待推送

        Raises:
            TransientNetworkError / RemoteRejectionError: 推送失败，状态不变
        """
        status = note.sync_status
        remote: Optional[RemoteNote]
        if status is SyncStatus.PENDING_CREATE:
            remote = self.client.create_note(note.id, note.title, note.body, note.label_ids)
            if _note_differs(remote, note):
                logger.info("sync_push_create_reconciled", note_id=note.id)
                remote = self.client.update_note(note.id, note.title, note.body, note.label_ids, False)
        elif status is SyncStatus.PENDING_UPDATE:
            remote = self.client.update_note(
                note.id, note.title, note.body, note.label_ids, note.is_deleted
            )
        elif status is SyncStatus.PENDING_DELETE:
            remote = self.client.delete_note(note.id)
        else:
            return True

        event = _ACK_EVENTS[status] if immediate else SyncEvent.PUSH_SUCCEEDED
        marked = self.replica.mark_note_synced(
            note.owner_id,
            note.id,
            note.revision,
            event=event,
            remote_updated_at=remote.updated_at if remote else None,
        )
        if not marked:
            logger.info("sync_push_superseded", entity="note", note_id=note.id, revision=note.revision)
        return marked

    def record_note_failure(self, note: LocalNote, error: Exception) -> int:
        rejected = isinstance(error, RemoteRejectionError)
        return self.replica.record_note_failure(note.owner_id, note.id, str(error), rejected)

    # ==================== 标签 ====================

    def push_label(self, label: LocalLabel, immediate: bool = False) -> bool:
        """推送一个标签；待删除的标签成功后在本地物理删除"""
        status = label.sync_status
        if status is SyncStatus.PENDING_CREATE:
            remote = self.client.create_label(label.id, label.name, label.color)
            if remote.name != label.name or remote.color != label.color:
                self.client.update_label(label.id, label.name, label.color)
        elif status is SyncStatus.PENDING_UPDATE:
            self.client.update_label(label.id, label.name, label.color)
        elif status is SyncStatus.PENDING_DELETE:
            self.client.delete_label(label.id)
        else:
            return True

        event = _ACK_EVENTS[status] if immediate else SyncEvent.PUSH_SUCCEEDED
        marked = self.replica.mark_label_synced(label.owner_id, label.id, label.revision, event=event)
        if not marked:
            logger.info("sync_push_superseded", entity="label", label_id=label.id, revision=label.revision)
        return marked

    def record_label_failure(self, label: LocalLabel, error: Exception) -> int:
        rejected = isinstance(error, RemoteRejectionError)
        return self.replica.record_label_failure(label.owner_id, label.id, str(error), rejected)
