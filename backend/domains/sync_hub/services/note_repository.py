"""
笔记写入路径（设备端）

用户的所有修改先写本地副本，永远成功（与网络无关），并标记为待推送。
配置了远端客户端且当前联网时，写入后立即尝试推送这一条；
失败只记录原因，实体保持待推送，交给周期同步重试。
"""

import uuid
from typing import Any, Dict, Iterable, List, Optional

from domains.core.exceptions import (
    LabelNameConflictError,
    LabelNotFoundError,
    NoteNotFoundError,
    ValidationError,
)
from domains.infra.logging import get_logger

from ..core.models import DEFAULT_LABEL_COLOR, LocalLabel, LocalNote, SyncStatus
from ..core.replica_store import ReplicaStore
from .connectivity import ConnectivityChecker
from .pusher import ChangePusher, PushError
from .remote_client import RemoteNotesClient

logger = get_logger(__name__)


class NotesRepository:
    """
    设备端笔记仓库

    Args:
        replica: 本地副本
        client: 远端客户端，None 表示纯离线
        connectivity: 联网探测器，决定是否立即推送
        max_rejections: 拒绝次数上限（pending_summary 统计暂停推送的实体）
    """

    def __init__(
        self,
        replica: ReplicaStore,
        client: Optional[RemoteNotesClient] = None,
        connectivity: Optional[ConnectivityChecker] = None,
        max_rejections: int = 5,
    ):
        self.replica = replica
        self.connectivity = connectivity
        self.max_rejections = max_rejections
        self._pusher = ChangePusher(replica, client, max_rejections) if client is not None else None

    # ==================== 笔记查询 ====================

    def get_note(self, owner_id: str, note_id: str, include_deleted: bool = False) -> Optional[LocalNote]:
        return self.replica.get_note(owner_id, note_id, include_deleted=include_deleted)

    def list_notes(self, owner_id: str) -> List[LocalNote]:
        return self.replica.list_notes(owner_id)

    def list_deleted_notes(self, owner_id: str) -> List[LocalNote]:
        return self.replica.list_deleted_notes(owner_id)

    def search_notes(self, owner_id: str, query: str) -> List[LocalNote]:
        if not query.strip():
            return []
        return self.replica.search_notes(owner_id, query.strip())

    def notes_by_label(self, owner_id: str, label_id: str) -> List[LocalNote]:
        return self.replica.notes_by_label(owner_id, label_id)

    # ==================== 笔记写入 ====================

    def create_note(
        self,
        owner_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        label_ids: Iterable[str] = (),
    ) -> LocalNote:
        """
        创建笔记，ID 在本地生成并在所有重试中保持不变

        Raises:
            LabelNotFoundError: 标签不存在
        """
        label_ids = self._check_labels(owner_id, label_ids)
        note = self.replica.insert_note(
            LocalNote(id=str(uuid.uuid4()), owner_id=owner_id, title=title, body=body),
            label_ids,
        )
        logger.info("note_created_locally", owner_id=owner_id, note_id=note.id)
        return self._push_note_now(note)

    def update_note(
        self,
        owner_id: str,
        note_id: str,
        label_ids: Optional[Iterable[str]] = None,
        **fields: Any,
    ) -> LocalNote:
        """
        修改标题 / 正文；label_ids 不为 None 时整体替换标签

        Raises:
            NoteNotFoundError: 笔记不存在或已删除
        """
        if label_ids is not None:
            label_ids = self._check_labels(owner_id, label_ids)
        note = self.replica.update_note(owner_id, note_id, fields, label_ids=label_ids)
        return self._push_note_now(note)

    def add_label(self, owner_id: str, note_id: str, label_id: str) -> LocalNote:
        note = self._require_note(owner_id, note_id)
        if label_id in note.label_ids:
            return note
        return self.update_note(owner_id, note_id, label_ids=[*note.label_ids, label_id])

    def remove_label(self, owner_id: str, note_id: str, label_id: str) -> LocalNote:
        note = self._require_note(owner_id, note_id)
        if label_id not in note.label_ids:
            return note
        return self.update_note(owner_id, note_id, label_ids=[i for i in note.label_ids if i != label_id])

    def delete_note(self, owner_id: str, note_id: str) -> Optional[LocalNote]:
        """软删除；从未推送过的笔记直接在本地丢弃，返回 None"""
        note = self.replica.delete_note(owner_id, note_id)
        if note is None:
            return None
        return self._push_note_now(note)

    def restore_note(self, owner_id: str, note_id: str) -> LocalNote:
        """从回收站恢复，恢复结果在下一轮同步推送"""
        return self.replica.restore_note(owner_id, note_id)

    def purge_note(self, owner_id: str, note_id: str) -> bool:
        """只在本地物理删除，不会推送"""
        return self.replica.purge_note(owner_id, note_id)

    # ==================== 标签 ====================

    def list_labels(self, owner_id: str) -> List[LocalLabel]:
        return self.replica.list_labels(owner_id)

    def get_label(self, owner_id: str, label_id: str) -> Optional[LocalLabel]:
        return self.replica.get_label(owner_id, label_id)

    def create_label(self, owner_id: str, name: str, color: Optional[str] = None) -> LocalLabel:
        """
        创建标签

        Raises:
            LabelNameConflictError: 本地已有同名标签
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("标签名不能为空", field="name")
        if self.replica.find_label_by_name(owner_id, name) is not None:
            raise LabelNameConflictError(name)
        label = self.replica.insert_label(
            LocalLabel(id=str(uuid.uuid4()), owner_id=owner_id, name=name, color=color or DEFAULT_LABEL_COLOR)
        )
        return self._push_label_now(label)

    def update_label(
        self,
        owner_id: str,
        label_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
    ) -> LocalLabel:
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("标签名不能为空", field="name")
            existing = self.replica.find_label_by_name(owner_id, name)
            if existing is not None and existing.id != label_id:
                raise LabelNameConflictError(name)
        label = self.replica.update_label(owner_id, label_id, {'name': name, 'color': color})
        return self._push_label_now(label)

    def delete_label(self, owner_id: str, label_id: str) -> None:
        """删除标签，本地关联立即移除"""
        label = self.replica.delete_label(owner_id, label_id)
        if label is not None:
            self._push_label_now(label)

    # ==================== 状态 ====================

    def pending_summary(self, owner_id: str) -> Dict[str, Any]:
        """待推送实体统计，以及被拒绝的实体与最近错误"""
        counts = self.replica.pending_counts(owner_id, self.max_rejections)
        rejected = [
            {'entity_type': 'note', 'id': note.id, 'rejection_count': note.rejection_count,
             'last_error': note.last_error}
            for note in self.replica.pending_notes(owner_id)
            if note.last_error
        ] + [
            {'entity_type': 'label', 'id': label.id, 'rejection_count': label.rejection_count,
             'last_error': label.last_error}
            for label in self.replica.pending_labels(owner_id)
            if label.last_error
        ]
        total = sum(
            count for table in counts.values()
            for status, count in table.items() if status != 'parked'
        )
        return {'total_pending': total, 'notes': counts['notes'], 'labels': counts['labels'], 'errors': rejected}

    # ==================== 内部 ====================

    def _require_note(self, owner_id: str, note_id: str) -> LocalNote:
        note = self.replica.get_note(owner_id, note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def _check_labels(self, owner_id: str, label_ids: Iterable[str]) -> List[str]:
        label_ids = list(dict.fromkeys(label_ids))
        for label_id in label_ids:
            if self.replica.get_label(owner_id, label_id) is None:
                raise LabelNotFoundError(label_id)
        return label_ids

    def _online(self) -> bool:
        return self._pusher is not None and self.connectivity is not None and self.connectivity.is_online()

    def _push_note_now(self, note: LocalNote) -> LocalNote:
        if not self._online():
            return note

        # 引用了尚未推送的标签时，交给同步按顺序推送
        for label_id in note.label_ids:
            label = self.replica.get_label(note.owner_id, label_id)
            if label is not None and label.sync_status is SyncStatus.PENDING_CREATE:
                return note

        try:
            self._pusher.push_note(note, immediate=True)
        except PushError as e:
            self._pusher.record_note_failure(note, e)
            logger.warning("note_push_deferred", owner_id=note.owner_id, note_id=note.id, error=str(e))
        return self.replica.get_note(note.owner_id, note.id, include_deleted=True) or note

    def _push_label_now(self, label: LocalLabel) -> LocalLabel:
        if not self._online():
            return label
        try:
            self._pusher.push_label(label, immediate=True)
        except PushError as e:
            self._pusher.record_label_failure(label, e)
            logger.warning("label_push_deferred", owner_id=label.owner_id, label_id=label.id, error=str(e))
        return self.replica.get_label(label.owner_id, label.id, include_deleted=True) or label
