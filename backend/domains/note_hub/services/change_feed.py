"""
变更流服务

客户端拉取阶段使用的三个查询：
- current_cursor: 本轮开始时间（服务端时钟）
- changes_since: updated_at 严格大于给定时间的笔记，升序，含墓碑
- full_snapshot: 首次同步时的全量快照，含墓碑

范围为全局或单个标签（只包含当前关联了该标签的笔记）。
"""

import logging
from datetime import datetime
from typing import List, Optional

from domains.core.exceptions import LabelNotFoundError

from ..core.label_store import LabelStore
from ..core.models import ChangeCursor, Note
from ..core.store import NoteStore

logger = logging.getLogger(__name__)


class ChangeFeedService:
    """变更流服务"""

    def __init__(self, note_store: NoteStore, label_store: LabelStore):
        self.note_store = note_store
        self.label_store = label_store

    def current_cursor(self, owner_id: str, label_id: Optional[str] = None) -> ChangeCursor:
        self._check_scope(owner_id, label_id)
        return self.note_store.cursor(owner_id, label_id)

    def changes_since(
        self,
        owner_id: str,
        since: datetime,
        label_id: Optional[str] = None,
    ) -> List[Note]:
        self._check_scope(owner_id, label_id)
        notes = self.note_store.changed_since(owner_id, since, label_id)
        logger.debug(f"changes_since: owner={owner_id} since={since.isoformat()} count={len(notes)}")
        return notes

    def full_snapshot(self, owner_id: str, label_id: Optional[str] = None) -> List[Note]:
        self._check_scope(owner_id, label_id)
        notes = self.note_store.snapshot(owner_id, label_id)
        logger.debug(f"full_snapshot: owner={owner_id} label={label_id} count={len(notes)}")
        return notes

    def _check_scope(self, owner_id: str, label_id: Optional[str]) -> None:
        if label_id and self.label_store.get_owner(label_id) != owner_id:
            raise LabelNotFoundError(label_id)
