"""
核心层：本地数据模型、状态机与 SQLite 副本
"""

from .models import (
    DEFAULT_LABEL_COLOR,
    GLOBAL_SCOPE,
    LocalLabel,
    LocalNote,
    PushFailure,
    RemoteCursor,
    RemoteLabel,
    RemoteNote,
    SyncCursor,
    SyncEvent,
    SyncOutcome,
    SyncReport,
    SyncScope,
    SyncStatus,
)
from .replica_store import ReplicaStore
from .state_machine import REMOVED, TRANSITIONS, can_transition, transition

__all__ = [
    'DEFAULT_LABEL_COLOR',
    'GLOBAL_SCOPE',
    'LocalNote',
    'LocalLabel',
    'RemoteNote',
    'RemoteLabel',
    'RemoteCursor',
    'SyncCursor',
    'SyncEvent',
    'SyncOutcome',
    'SyncReport',
    'SyncScope',
    'SyncStatus',
    'PushFailure',
    'ReplicaStore',
    'TRANSITIONS',
    'REMOVED',
    'transition',
    'can_transition',
]
