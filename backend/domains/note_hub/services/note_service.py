"""
笔记服务层

提供笔记的业务逻辑封装，所有操作都限定在单个所有者范围内。

- 创建按客户端 ID 幂等：同一所有者重放返回已有笔记，不做修改
- 删除为软删除，重复删除不报错
- 标签 ID 必须属于同一所有者
"""

import logging
from typing import Any, Dict, List, Optional

from domains.core.exceptions import ConflictError, NoteNotFoundError, ValidationError

from ..core.label_store import LabelStore
from ..core.models import Note
from ..core.store import NoteStore

logger = logging.getLogger(__name__)

# 允许通过 update 修改的字段
UPDATABLE_FIELDS = ('title', 'body', 'is_deleted')


class NoteService:
    """
    笔记服务层

    封装笔记相关的业务逻辑，代理存储层操作。
    """

    def __init__(self, store: NoteStore, label_store: LabelStore):
        """
        初始化服务

        Args:
            store: 笔记存储层实例
            label_store: 标签存储层实例（校验标签归属）
        """
        self.store = store
        self.label_store = label_store

    # ==================== 查询 ====================

    def get_note(self, owner_id: str, note_id: str) -> Note:
        """获取笔记（包含墓碑）"""
        note = self.store.get(owner_id, note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def list_notes(
        self,
        owner_id: str,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Note]:
        """列出笔记；include_deleted=True 时返回回收站"""
        return self.store.list(owner_id, include_deleted=include_deleted, limit=limit, offset=offset)

    def count_notes(self, owner_id: str, include_deleted: bool = False) -> int:
        return self.store.count_owned(owner_id, "is_deleted = %s", [include_deleted])

    def search_notes(self, owner_id: str, query: str, limit: int = 100) -> List[Note]:
        """按标题 / 正文搜索未删除的笔记"""
        if not query.strip():
            return []
        return self.store.search(owner_id, query.strip(), limit=limit)

    def notes_by_label(self, owner_id: str, label_id: str) -> List[Note]:
        """列出带某个标签的未删除笔记"""
        return self.store.list(owner_id, label_id=label_id)

    # ==================== 写入 ====================

    def create_note(
        self,
        owner_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        label_ids: Optional[List[str]] = None,
        note_id: Optional[str] = None,
    ) -> Note:
        """
        创建笔记

        Args:
            owner_id: 所有者
            title: 标题
            body: 正文
            label_ids: 关联的标签 ID
            note_id: 客户端生成的 ID，重放时保持不变

        Returns:
            新建的笔记；如果该 ID 已由同一所有者创建，返回已有笔记

        Raises:
            ConflictError: 该 ID 已被其他所有者占用
            ValidationError: 标签不存在
        """
        label_ids = list(dict.fromkeys(label_ids or []))

        if note_id:
            existing = self._replayed(owner_id, note_id)
            if existing is not None:
                return existing

        self._check_labels(owner_id, label_ids)

        note = Note(owner_id=owner_id, title=title, body=body)
        if note_id:
            note.id = note_id

        created = self.store.create(note, label_ids)
        if not created:
            # 并发重放：插入被 ON CONFLICT 忽略
            existing = self._replayed(owner_id, note.id)
            if existing is None:
                raise ConflictError("笔记", "id", note.id)
            return existing

        logger.info(f"note_created: {note.id} owner={owner_id} labels={len(label_ids)}")
        return self.get_note(owner_id, note.id)

    def update_note(
        self,
        owner_id: str,
        note_id: str,
        fields: Dict[str, Any],
        label_ids: Optional[List[str]] = None,
    ) -> Note:
        """
        更新笔记

        fields 只接受 title / body / is_deleted；label_ids 不为 None 时整体替换关联。
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"不支持更新的字段: {', '.join(sorted(unknown))}")

        if label_ids is not None:
            label_ids = list(dict.fromkeys(label_ids))
            self._check_labels(owner_id, label_ids)

        if not self.store.update(owner_id, note_id, fields, label_ids=label_ids):
            raise NoteNotFoundError(note_id)
        return self.get_note(owner_id, note_id)

    def delete_note(self, owner_id: str, note_id: str) -> Note:
        """软删除；已删除的笔记原样返回"""
        note = self.get_note(owner_id, note_id)
        if note.is_deleted:
            return note
        self.store.soft_delete(owner_id, note_id)
        logger.info(f"note_deleted: {note_id} owner={owner_id}")
        return self.get_note(owner_id, note_id)

    def restore_note(self, owner_id: str, note_id: str) -> Note:
        """恢复已删除的笔记；未删除的笔记原样返回"""
        note = self.get_note(owner_id, note_id)
        if not note.is_deleted:
            return note
        self.store.restore(owner_id, note_id)
        logger.info(f"note_restored: {note_id} owner={owner_id}")
        return self.get_note(owner_id, note_id)

    def purge_note(self, owner_id: str, note_id: str) -> None:
        """物理删除（不可恢复，不进入变更流）"""
        if not self.store.purge(owner_id, note_id):
            raise NoteNotFoundError(note_id)
        logger.info(f"note_purged: {note_id} owner={owner_id}")

    # ==================== 内部 ====================

    def _replayed(self, owner_id: str, note_id: str) -> Optional[Note]:
        """ID 已存在时：同一所有者返回已有笔记，其他所有者抛出冲突"""
        existing_owner = self.store.get_owner(note_id)
        if existing_owner is None:
            return None
        if existing_owner != owner_id:
            raise ConflictError("笔记", "id", note_id)
        logger.info(f"note_create_replayed: {note_id} owner={owner_id}")
        return self.get_note(owner_id, note_id)

    def _check_labels(self, owner_id: str, label_ids: List[str]) -> None:
        if not label_ids:
            return
        missing = set(label_ids) - self.label_store.existing_ids(owner_id, label_ids)
        if missing:
            raise ValidationError(
                f"标签不存在: {', '.join(sorted(missing))}",
                field="label_ids",
            )
