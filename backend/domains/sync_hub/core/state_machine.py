"""
同步状态机

迁移表以数据形式给出，(当前状态, 事件) -> 目标状态。
当前状态为 None 表示实体尚不存在；目标为 REMOVED 表示本地直接物理删除
（从未推送过的实体被删除时没有任何东西需要推送）。

恢复（restore）的目标依赖删除前的状态，单独处理。
"""

from typing import Dict, Optional, Tuple, Union

from domains.core.exceptions import InvalidTransitionError

from .models import SyncEvent, SyncStatus


class _Removed:
    def __repr__(self) -> str:
        return "REMOVED"


REMOVED = _Removed()

Target = Union[SyncStatus, _Removed]

_S = SyncStatus
_E = SyncEvent

TRANSITIONS: Dict[Tuple[Optional[SyncStatus], SyncEvent], Target] = {
    # 创建
    (None, _E.CREATE_LOCAL): _S.PENDING_CREATE,
    (None, _E.CREATE_ACKNOWLEDGED): _S.SYNCED,

    # 本地写入后立即推送成功
    (_S.PENDING_CREATE, _E.CREATE_ACKNOWLEDGED): _S.SYNCED,
    (_S.PENDING_DELETE, _E.DELETE_ACKNOWLEDGED): _S.SYNCED,

    # 修改
    (_S.PENDING_CREATE, _E.UPDATE): _S.PENDING_CREATE,
    (_S.SYNCED, _E.UPDATE): _S.PENDING_UPDATE,
    (_S.SYNCED, _E.UPDATE_ACKNOWLEDGED): _S.SYNCED,
    (_S.PENDING_UPDATE, _E.UPDATE): _S.PENDING_UPDATE,
    (_S.PENDING_UPDATE, _E.UPDATE_ACKNOWLEDGED): _S.SYNCED,

    # 删除
    (_S.PENDING_CREATE, _E.DELETE): REMOVED,
    (_S.SYNCED, _E.DELETE): _S.PENDING_DELETE,
    (_S.PENDING_UPDATE, _E.DELETE): _S.PENDING_DELETE,
    (_S.SYNCED, _E.DELETE_ACKNOWLEDGED): _S.SYNCED,
    (_S.PENDING_UPDATE, _E.DELETE_ACKNOWLEDGED): _S.SYNCED,

    # 推送结果
    (_S.PENDING_CREATE, _E.PUSH_SUCCEEDED): _S.SYNCED,
    (_S.PENDING_UPDATE, _E.PUSH_SUCCEEDED): _S.SYNCED,
    (_S.PENDING_DELETE, _E.PUSH_SUCCEEDED): _S.SYNCED,
    (_S.PENDING_CREATE, _E.PUSH_FAILED): _S.PENDING_CREATE,
    (_S.PENDING_UPDATE, _E.PUSH_FAILED): _S.PENDING_UPDATE,
    (_S.PENDING_DELETE, _E.PUSH_FAILED): _S.PENDING_DELETE,

    # 已同步的墓碑被恢复，需要把恢复推送出去
    (_S.SYNCED, _E.RESTORE): _S.PENDING_UPDATE,
}

# 恢复待推送删除时允许回到的状态
_RESTORABLE = (_S.SYNCED, _S.PENDING_UPDATE)


def transition(
    current: Optional[SyncStatus],
    event: SyncEvent,
    status_before_delete: Optional[SyncStatus] = None,
) -> Target:
    """
    计算迁移目标

    Raises:
        InvalidTransitionError: 迁移不在表中
    """
    if event is SyncEvent.RESTORE and current is SyncStatus.PENDING_DELETE:
        if status_before_delete in _RESTORABLE:
            return status_before_delete
        return SyncStatus.PENDING_UPDATE

    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(current, event) from None


def can_transition(current: Optional[SyncStatus], event: SyncEvent) -> bool:
    if event is SyncEvent.RESTORE and current is SyncStatus.PENDING_DELETE:
        return True
    return (current, event) in TRANSITIONS
