"""
Core - 通用应用基础设施

提供与具体协议无关的基础设施组件:
- 统一异常体系（含同步引擎的错误分类）
- 服务生命周期管理
"""

from .exceptions import (
    ApplicationError,
    AuthenticationError,
    AuthFailureError,
    BusinessError,
    ConflictError,
    ErrorCategory,
    ExternalServiceError,
    InvalidTransitionError,
    LabelNameConflictError,
    LabelNotFoundError,
    LocalStorageError,
    NoteNotFoundError,
    NotFoundError,
    RemoteRejectionError,
    SyncInProgressError,
    TransientNetworkError,
    ValidationError,
)
from .lifecycle import (
    ServiceDefinition,
    ServiceRegistry,
    get_service_registry,
    register_core_services,
    reset_service_registry,
)

__all__ = [
    # Exceptions
    "ErrorCategory",
    "ApplicationError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "AuthenticationError",
    "BusinessError",
    "ExternalServiceError",
    "NoteNotFoundError",
    "LabelNotFoundError",
    "LabelNameConflictError",
    "TransientNetworkError",
    "AuthFailureError",
    "RemoteRejectionError",
    "LocalStorageError",
    "InvalidTransitionError",
    "SyncInProgressError",
    # Lifecycle
    "ServiceRegistry",
    "ServiceDefinition",
    "get_service_registry",
    "reset_service_registry",
    "register_core_services",
]
