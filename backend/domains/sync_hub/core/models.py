"""
设备端数据模型

本地副本中的每个实体都带有同步状态：
- synced: 与远端一致
- pending_create: 从未被远端确认过
- pending_update: 已确认过，本地有未推送的修改
- pending_delete: 本地已软删除，删除尚未推送

revision 是本地修改计数器，推送成功后只有在 revision 未变化时才标记为 synced，
推送期间发生的本地修改不会丢失。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_LABEL_COLOR = "#808080"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    """同步状态"""
    SYNCED = "synced"
    PENDING_CREATE = "pending_create"
    PENDING_UPDATE = "pending_update"
    PENDING_DELETE = "pending_delete"

    @property
    def is_pending(self) -> bool:
        return self is not SyncStatus.SYNCED


class SyncEvent(str, Enum):
    """触发状态迁移的事件"""
    CREATE_LOCAL = "create_local"
    CREATE_ACKNOWLEDGED = "create_acknowledged"
    UPDATE = "update"
    UPDATE_ACKNOWLEDGED = "update_acknowledged"
    DELETE = "delete"
    DELETE_ACKNOWLEDGED = "delete_acknowledged"
    PUSH_SUCCEEDED = "push_succeeded"
    PUSH_FAILED = "push_failed"
    RESTORE = "restore"


class SyncOutcome(str, Enum):
    """一轮同步的结果"""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass
class LocalNote:
    """
    本地笔记

    Attributes:
        id: 客户端生成的 UUID，重试推送时保持不变
        status_before_delete: 软删除前的状态，恢复时回到该状态
        rejection_count: 连续被远端拒绝的次数，本地修改后清零
        last_error: 最近一次推送失败的原因
    """
    id: str
    owner_id: str
    title: str | None = None
    body: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.PENDING_CREATE
    status_before_delete: SyncStatus | None = None
    revision: int = 0
    rejection_count: int = 0
    last_error: str | None = None
    label_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'title': self.title,
            'body': self.body,
            'is_deleted': self.is_deleted,
            'deleted_at': self.deleted_at.isoformat() if self.deleted_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'sync_status': self.sync_status.value,
            'rejection_count': self.rejection_count,
            'last_error': self.last_error,
            'label_ids': list(self.label_ids),
        }


@dataclass
class LocalLabel:
    """本地标签（没有墓碑，删除推送成功后物理删除）"""
    id: str
    owner_id: str
    name: str
    color: str = DEFAULT_LABEL_COLOR
    created_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.PENDING_CREATE
    revision: int = 0
    rejection_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'color': self.color,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sync_status': self.sync_status.value,
            'rejection_count': self.rejection_count,
            'last_error': self.last_error,
        }


@dataclass
class RemoteNote:
    """远端返回的笔记快照（拉取合并使用）"""
    id: str
    title: str | None = None
    body: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    label_ids: list[str] = field(default_factory=list)


@dataclass
class RemoteLabel:
    """远端返回的标签"""
    id: str
    name: str
    color: str = DEFAULT_LABEL_COLOR
    created_at: datetime | None = None


@dataclass
class RemoteCursor:
    """远端游标：server_time 作为本轮开始时间"""
    server_time: datetime
    last_change_at: datetime | None = None


@dataclass(frozen=True)
class SyncScope:
    """
    同步范围

    全局范围的 key 为 "global"，标签范围为 "label:<label_id>"。
    """
    label_id: str | None = None

    @property
    def key(self) -> str:
        return f"label:{self.label_id}" if self.label_id else "global"

    @classmethod
    def for_label(cls, label_id: str) -> "SyncScope":
        return cls(label_id=label_id)

    @classmethod
    def parse(cls, key: str) -> "SyncScope":
        if key == "global":
            return cls()
        if key.startswith("label:") and len(key) > len("label:"):
            return cls(label_id=key[len("label:"):])
        raise ValueError(f"无效的同步范围: {key}")

    def __str__(self) -> str:
        return self.key


GLOBAL_SCOPE = SyncScope()


@dataclass
class SyncCursor:
    """
    同步游标（每个所有者 + 范围一条）

    last_synced_at: 上一次成功完成的同步的开始时间（远端时钟），下一轮从这里增量拉取
    last_change_seen: 已拉取到的最大 updated_at
    """
    owner_id: str
    scope: str
    last_synced_at: datetime
    last_change_seen: datetime | None = None


@dataclass
class PushFailure:
    """单个实体推送失败的记录"""
    entity_type: str
    entity_id: str
    operation: str
    error: str
    retryable: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'operation': self.operation,
            'error': self.error,
            'retryable': self.retryable,
        }


@dataclass
class SyncReport:
    """一轮同步的报告"""
    owner_id: str
    scope: str
    outcome: SyncOutcome = SyncOutcome.SUCCESS
    started_at: datetime | None = None
    finished_at: datetime | None = None
    full_snapshot: bool = False
    pulled_notes: int = 0
    pulled_labels: int = 0
    removed_labels: int = 0
    skipped_pending: int = 0
    pushed: int = 0
    parked: int = 0
    failures: list[PushFailure] = field(default_factory=list)
    cursor_advanced: bool = False
    cancelled: bool = False
    error: str | None = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            'owner_id': self.owner_id,
            'scope': self.scope,
            'outcome': self.outcome.value,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'full_snapshot': self.full_snapshot,
            'pulled_notes': self.pulled_notes,
            'pulled_labels': self.pulled_labels,
            'removed_labels': self.removed_labels,
            'skipped_pending': self.skipped_pending,
            'pushed': self.pushed,
            'parked': self.parked,
            'failed': self.failed,
            'failures': [f.to_dict() for f in self.failures],
            'cursor_advanced': self.cursor_advanced,
            'cancelled': self.cancelled,
            'error': self.error,
        }
