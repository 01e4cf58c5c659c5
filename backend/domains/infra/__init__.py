"""
Infra - 基础设施组件

提供与具体业务无关的基础设施:
- PostgreSQL 存储层基类
- 结构化日志配置
- 配置管理（pydantic-settings）

注意: 统一异常与服务生命周期在 domains.core 模块中。
"""

from .base.store import (
    BaseStore,
    ThreadSafeConnectionMixin,
    get_database_url,
)
from .settings import (
    LoggingSettings,
    NotesSettings,
    ServerSettings,
    SyncSettings,
    get_logging_settings,
    get_server_settings,
    get_settings,
    get_sync_settings,
    reload_settings,
)

__all__ = [
    # Store
    "BaseStore",
    "ThreadSafeConnectionMixin",
    "get_database_url",
    # Settings
    "NotesSettings",
    "SyncSettings",
    "LoggingSettings",
    "ServerSettings",
    "get_settings",
    "get_sync_settings",
    "get_logging_settings",
    "get_server_settings",
    "reload_settings",
]
