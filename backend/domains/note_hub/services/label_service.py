"""
标签服务层

标签名在同一所有者下唯一；创建按 ID 幂等。
"""

import logging
from typing import Any, Dict, List, Optional

from domains.core.exceptions import ConflictError, LabelNotFoundError, ValidationError

from ..core.label_store import LabelStore
from ..core.models import DEFAULT_LABEL_COLOR, Label

logger = logging.getLogger(__name__)


class LabelService:
    """标签服务层"""

    def __init__(self, store: LabelStore):
        self.store = store

    def list_labels(self, owner_id: str) -> List[Label]:
        return self.store.list(owner_id)

    def get_label(self, owner_id: str, label_id: str) -> Label:
        label = self.store.get(owner_id, label_id)
        if label is None:
            raise LabelNotFoundError(label_id)
        return label

    def create_label(
        self,
        owner_id: str,
        name: str,
        color: Optional[str] = None,
        label_id: Optional[str] = None,
    ) -> Label:
        """
        创建标签

        Raises:
            ValidationError: 名称为空
            LabelNameConflictError: 名称已存在
            ConflictError: 该 ID 已被其他所有者占用
        """
        name = self._clean_name(name)

        if label_id:
            existing = self._replayed(owner_id, label_id)
            if existing is not None:
                return existing

        label = Label(owner_id=owner_id, name=name, color=color or DEFAULT_LABEL_COLOR)
        if label_id:
            label.id = label_id

        if not self.store.create(label):
            existing = self._replayed(owner_id, label.id)
            if existing is None:
                raise ConflictError("标签", "id", label.id)
            return existing

        logger.info(f"label_created: {label.id} owner={owner_id} name={name}")
        return self.get_label(owner_id, label.id)

    def update_label(self, owner_id: str, label_id: str, fields: Dict[str, Any]) -> Label:
        """更新名称 / 颜色"""
        updates = {k: v for k, v in fields.items() if k in ('name', 'color') and v is not None}
        if 'name' in updates:
            updates['name'] = self._clean_name(updates['name'])

        if not self.store.update(owner_id, label_id, updates):
            raise LabelNotFoundError(label_id)
        return self.get_label(owner_id, label_id)

    def delete_label(self, owner_id: str, label_id: str) -> None:
        """删除标签（关联笔记的修改时间会刷新）"""
        if not self.store.delete(owner_id, label_id):
            raise LabelNotFoundError(label_id)

    def _replayed(self, owner_id: str, label_id: str) -> Optional[Label]:
        existing_owner = self.store.get_owner(label_id)
        if existing_owner is None:
            return None
        if existing_owner != owner_id:
            raise ConflictError("标签", "id", label_id)
        return self.get_label(owner_id, label_id)

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("标签名不能为空", field="name")
        return name
