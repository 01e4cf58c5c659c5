"""
设备端离线同步领域模块

离线优先：用户修改先写本地 SQLite 副本并标记为待推送，
联网时由调度器周期执行 拉取 -> 合并 -> 推送 -> 推进游标。

核心功能：
- 本地副本与同步状态机（synced / pending_create / pending_update / pending_delete）
- 按客户端 ID 幂等推送，软删除以墓碑形式传播
- 周期调度、线性退避、同一所有者不重叠
"""

from .core import GLOBAL_SCOPE, LocalLabel, LocalNote, ReplicaStore, SyncReport, SyncScope, SyncStatus
from .services import (
    HttpConnectivityChecker,
    NotesRepository,
    RemoteNotesClient,
    StaticConnectivity,
    SyncOrchestrator,
    SyncScheduler,
)

__all__ = [
    'GLOBAL_SCOPE',
    'LocalNote',
    'LocalLabel',
    'ReplicaStore',
    'SyncReport',
    'SyncScope',
    'SyncStatus',
    'NotesRepository',
    'RemoteNotesClient',
    'HttpConnectivityChecker',
    'StaticConnectivity',
    'SyncOrchestrator',
    'SyncScheduler',
]
