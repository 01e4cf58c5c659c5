"""
笔记 / 标签数据模型定义（远端权威存储）

远端存储没有"待推送"的概念，只保存每个实体的当前状态：
- 笔记软删除后保留为墓碑（is_deleted + deleted_at），
  以便变更流把删除传播到其他设备
- 笔记与标签为多对多关联，任一侧物理删除时级联删除关联
"""

import uuid as uuid_lib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

DEFAULT_LABEL_COLOR = "#808080"


def utcnow() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


@dataclass
class LabelRef:
    """笔记上携带的标签引用"""
    id: str
    name: str = ""
    color: str = DEFAULT_LABEL_COLOR

    def to_dict(self) -> dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'color': self.color}


@dataclass
class Note:
    """
    笔记

    Attributes:
        id: 笔记 ID（客户端生成的 UUID，重试时保持不变）
        owner_id: 所有者 ID
        title: 标题（可选）
        body: 正文（可选）
        is_deleted: 软删除标记
        deleted_at: 软删除时间
        created_at: 创建时间
        updated_at: 最后修改时间（变更流按此字段排序和过滤）
        labels: 当前关联的标签
    """
    id: str = field(default_factory=lambda: str(uuid_lib.uuid4()))
    owner_id: str = ""
    title: str | None = None
    body: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    labels: list[LabelRef] = field(default_factory=list)

    @property
    def label_ids(self) -> list[str]:
        return [label.id for label in self.labels]

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'title': self.title,
            'body': self.body,
            'is_deleted': self.is_deleted,
            'deleted_at': self.deleted_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'labels': [label.to_dict() for label in self.labels],
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> 'Note':
        """从数据库行创建（labels 列为 json_agg 聚合结果）"""
        valid_fields = {k: v for k, v in row.items() if k in cls.__dataclass_fields__ and k != 'labels'}
        labels = [
            LabelRef(id=str(item['id']), name=item.get('name', ''), color=item.get('color') or DEFAULT_LABEL_COLOR)
            for item in (row.get('labels') or [])
            if item and item.get('id') is not None
        ]
        labels.sort(key=lambda label: label.name)
        return cls(labels=labels, **valid_fields)


@dataclass
class Label:
    """
    标签

    (owner_id, name) 唯一。note_count 只统计未删除的笔记。
    """
    id: str = field(default_factory=lambda: str(uuid_lib.uuid4()))
    owner_id: str = ""
    name: str = ""
    color: str = DEFAULT_LABEL_COLOR
    created_at: datetime | None = None
    note_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'color': self.color,
            'created_at': self.created_at,
            'note_count': self.note_count,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> 'Label':
        valid_fields = {k: v for k, v in row.items() if k in cls.__dataclass_fields__}
        if valid_fields.get('note_count') is None:
            valid_fields['note_count'] = 0
        return cls(**valid_fields)


@dataclass
class ChangeCursor:
    """
    变更游标

    server_time 为服务端当前时间，客户端用作本轮同步的开始时间；
    last_change_at 为范围内最近一次修改时间（无数据时为 None）。
    """
    server_time: datetime
    last_change_at: datetime | None = None
    label_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'server_time': self.server_time,
            'last_change_at': self.last_change_at,
            'label_id': self.label_id,
        }
