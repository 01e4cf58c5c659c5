"""
存储基础组件

提供 PostgreSQL Store 的基类定义。
"""

from .store import (
    BaseStore,
    ThreadSafeConnectionMixin,
    get_database_url,
)

__all__ = [
    "BaseStore",
    "ThreadSafeConnectionMixin",
    "get_database_url",
]
