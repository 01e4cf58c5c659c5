"""
笔记远端领域模块（权威存储）

多设备共享的持久副本。设备离线期间的修改通过 sync_hub 推送到这里，
再经由变更流分发到其他设备。

核心功能：
- 笔记 CRUD，软删除保留墓碑
- 标签管理（同一所有者下名称唯一）
- 按客户端 ID 幂等创建
- 变更流：增量变更 / 全量快照 / 游标
"""

from .core import Label, LabelStore, Note, NoteStore
from .services import ChangeFeedService, LabelService, NoteService

__all__ = [
    'Note',
    'Label',
    'NoteStore',
    'LabelStore',
    'NoteService',
    'LabelService',
    'ChangeFeedService',
]
