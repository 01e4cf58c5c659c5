"""
统一异常体系

提供业务层和基础设施层的统一错误处理，包括:
- 业务异常基类 (ApplicationError)
- 常用业务异常类型
- 同步引擎的错误分类（可重试 / 远端拒绝 / 本地存储故障）
- HTTP 状态码映射
"""

from enum import Enum
from typing import Any, Dict, Optional, List
from dataclasses import dataclass


class ErrorCategory(str, Enum):
    """错误分类"""
    VALIDATION = "validation"      # 参数验证错误
    NOT_FOUND = "not_found"        # 资源不存在
    CONFLICT = "conflict"          # 资源冲突
    PERMISSION = "permission"      # 权限不足
    UNAUTHENTICATED = "unauthenticated"  # 未认证
    BUSINESS = "business"          # 业务逻辑错误
    EXTERNAL = "external"          # 外部服务错误
    INTERNAL = "internal"          # 内部错误


@dataclass
class ApplicationError(Exception):
    """
    应用层异常基类

    所有业务相关的异常都应继承此类。
    提供统一的错误结构，支持转换为 HTTP 响应。

    使用示例:
        raise NotFoundError("笔记", note_id)
        raise ConflictError("标签", "name", "Work")
        raise TransientNetworkError("notes-api", "连接超时")
    """
    code: str                                    # 错误码 (如 "NOT_FOUND", "VALIDATION_ERROR")
    message: str                                 # 用户可读的错误信息
    category: ErrorCategory = ErrorCategory.INTERNAL
    details: Optional[Dict[str, Any]] = None    # 附加详情
    cause: Optional[Exception] = None           # 原始异常

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    @property
    def http_status_code(self) -> int:
        """映射到 HTTP 状态码"""
        mapping = {
            ErrorCategory.VALIDATION: 400,
            ErrorCategory.NOT_FOUND: 404,
            ErrorCategory.CONFLICT: 409,
            ErrorCategory.PERMISSION: 403,
            ErrorCategory.UNAUTHENTICATED: 401,
            ErrorCategory.BUSINESS: 422,
            ErrorCategory.EXTERNAL: 502,
            ErrorCategory.INTERNAL: 500,
        }
        return mapping.get(self.category, 500)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式（用于 API 响应）"""
        result = {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
        }
        if self.details:
            result["details"] = self.details
        return result


# ==================== 常用业务异常 ====================

class NotFoundError(ApplicationError):
    """资源不存在"""
    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code="NOT_FOUND",
            message=f"{resource_type}不存在: {resource_id}",
            category=ErrorCategory.NOT_FOUND,
            details=details or {"resource_type": resource_type, "resource_id": str(resource_id)}
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ValidationError(ApplicationError):
    """参数验证错误"""
    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        field: Optional[str] = None
    ):
        details = {}
        if errors:
            details["validation_errors"] = errors
        if field:
            details["field"] = field

        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            category=ErrorCategory.VALIDATION,
            details=details or None
        )
        self.errors = errors
        self.field = field


class ConflictError(ApplicationError):
    """资源冲突（如标签重名）"""
    def __init__(
        self,
        resource_type: str,
        conflict_field: str,
        conflict_value: Any,
        message: Optional[str] = None
    ):
        super().__init__(
            code="CONFLICT",
            message=message or f"{resource_type}已存在: {conflict_field}={conflict_value}",
            category=ErrorCategory.CONFLICT,
            details={
                "resource_type": resource_type,
                "conflict_field": conflict_field,
                "conflict_value": str(conflict_value)
            }
        )


class AuthenticationError(ApplicationError):
    """未认证或凭证无效"""
    def __init__(self, message: str = "认证失败"):
        super().__init__(
            code="UNAUTHENTICATED",
            message=message,
            category=ErrorCategory.UNAUTHENTICATED,
        )


class BusinessError(ApplicationError):
    """业务逻辑错误"""
    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            code=code,
            message=message,
            category=ErrorCategory.BUSINESS,
            details=details,
            cause=cause
        )


class ExternalServiceError(ApplicationError):
    """外部服务错误"""
    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[Dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            code="EXTERNAL_SERVICE_ERROR",
            message=f"{service_name}: {message}",
            category=ErrorCategory.EXTERNAL,
            details=details or {"service": service_name},
            cause=cause
        )


# ==================== 笔记 / 标签 ====================

class NoteNotFoundError(NotFoundError):
    """笔记不存在"""
    def __init__(self, note_id: str):
        super().__init__("笔记", note_id)
        self.note_id = note_id


class LabelNotFoundError(NotFoundError):
    """标签不存在"""
    def __init__(self, label_id: str):
        super().__init__("标签", label_id)
        self.label_id = label_id


class LabelNameConflictError(ConflictError):
    """同一所有者下标签重名"""
    def __init__(self, name: str):
        super().__init__("标签", "name", name, message=f"标签名已存在: {name}")
        self.name = name


# ==================== 同步相关异常 ====================

class TransientNetworkError(ExternalServiceError):
    """
    可重试的网络错误

    超时、不可达、远端 5xx 等。实体保持待推送状态，下一轮同步重试。
    """
    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[Dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(service_name, message, details=details, cause=cause)
        self.code = "TRANSIENT_NETWORK_ERROR"


class AuthFailureError(TransientNetworkError):
    """
    远端返回未认证

    同步引擎按网络错误处理，凭证刷新由身份组件负责。
    """
    def __init__(self, service_name: str, message: str = "unauthenticated"):
        super().__init__(service_name, message)
        self.code = "AUTH_FAILURE"


class RemoteRejectionError(BusinessError):
    """
    远端拒绝了某个变更（约束冲突、参数非法、目标不存在）

    不会在同一轮内重试；实体保持待推送状态，直到用户在本地修改或删除它。
    """
    def __init__(
        self,
        message: str,
        status_code: int,
        entity_id: Optional[str] = None,
        details: Optional[Dict] = None,
    ):
        super().__init__(
            code="REMOTE_REJECTION",
            message=message,
            details={**(details or {}), "status_code": status_code, "entity_id": entity_id},
        )
        self.status_code = status_code
        self.entity_id = entity_id


class LocalStorageError(ApplicationError):
    """本地副本读写失败（磁盘 / 完整性错误），本轮同步终止"""
    def __init__(self, operation: str, cause: Optional[Exception] = None):
        super().__init__(
            code="LOCAL_STORAGE_ERROR",
            message=f"本地存储操作失败: {operation}" + (f" ({cause})" if cause else ""),
            category=ErrorCategory.INTERNAL,
            details={"operation": operation},
            cause=cause,
        )
        self.operation = operation


class InvalidTransitionError(BusinessError):
    """同步状态迁移非法"""
    def __init__(self, current: Any, event: Any):
        current_value = getattr(current, "value", current)
        event_value = getattr(event, "value", event)
        super().__init__(
            code="INVALID_TRANSITION",
            message=f"状态 {current_value} 不接受事件 {event_value}",
            details={"current": str(current_value), "event": str(event_value)},
        )
        self.current = current
        self.event = event


class SyncInProgressError(ConflictError):
    """同一所有者已有同步在运行"""
    def __init__(self, owner_id: str):
        super().__init__(
            "同步任务",
            "owner_id",
            owner_id,
            message=f"所有者 {owner_id} 的同步正在进行",
        )
        self.owner_id = owner_id


# ==================== 导出 ====================

__all__ = [
    # 基类
    "ErrorCategory",
    "ApplicationError",
    # 通用异常
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "AuthenticationError",
    "BusinessError",
    "ExternalServiceError",
    # 笔记 / 标签
    "NoteNotFoundError",
    "LabelNotFoundError",
    "LabelNameConflictError",
    # 同步
    "TransientNetworkError",
    "AuthFailureError",
    "RemoteRejectionError",
    "LocalStorageError",
    "InvalidTransitionError",
    "SyncInProgressError",
]
