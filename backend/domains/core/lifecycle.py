"""
服务生命周期管理

集中式的服务注册、获取和清理。

- 延迟初始化（首次访问时创建）
- 依赖按顺序创建
- 逆序关闭
- 测试时可用 set() 替换任意服务（例如用内存存储替换 PostgreSQL 存储）

使用示例:
    registry = get_service_registry()
    registry.register("note_store", lambda: NoteStore())
    registry.register("note_service", lambda: NoteService(registry.get("note_store")),
                      dependencies=["note_store"])

    note_service = registry.get("note_service")
    await registry.shutdown()
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ServiceDefinition:
    """服务定义"""
    name: str
    factory: Callable[[], Any]
    instance: Any | None = None
    dependencies: list[str] = field(default_factory=list)
    cleanup: Callable[[Any], None] | None = None
    initialized: bool = False


class ServiceRegistry:
    """服务注册表"""

    def __init__(self):
        self._services: dict[str, ServiceDefinition] = {}
        self._init_order: list[str] = []

    def register(
        self,
        name: str,
        factory: Callable[[], T],
        dependencies: list[str] | None = None,
        cleanup: Callable[[T], None] | None = None,
    ) -> "ServiceRegistry":
        """
        注册服务

        Args:
            name: 服务名称（唯一标识）
            factory: 服务工厂函数（无参数，返回服务实例）
            dependencies: 依赖的其他服务名称
            cleanup: 清理函数（接收服务实例）

        Returns:
            self，支持链式调用
        """
        if name in self._services:
            logger.warning(f"服务 {name} 已注册，将被覆盖")

        self._services[name] = ServiceDefinition(
            name=name,
            factory=factory,
            dependencies=dependencies or [],
            cleanup=cleanup,
        )
        return self

    def get(self, name: str) -> Any:
        """
        获取服务实例，首次访问时先初始化依赖再创建

        Raises:
            KeyError: 服务未注册
        """
        if name not in self._services:
            raise KeyError(f"服务未注册: {name}")

        definition = self._services[name]
        if definition.initialized and definition.instance is not None:
            return definition.instance

        for dep_name in definition.dependencies:
            self.get(dep_name)

        try:
            definition.instance = definition.factory()
            definition.initialized = True
            self._init_order.append(name)
            logger.debug(f"服务 {name} 已初始化")
        except Exception as e:
            logger.error(f"服务 {name} 初始化失败: {e}")
            raise

        return definition.instance

    def set(self, name: str, instance: Any) -> None:
        """直接设置服务实例（用于测试或外部注入）"""
        if name not in self._services:
            self._services[name] = ServiceDefinition(
                name=name,
                factory=lambda: instance,
            )

        self._services[name].instance = instance
        self._services[name].initialized = True

        if name not in self._init_order:
            self._init_order.append(name)

    def reset(self, name: str) -> None:
        """重置单个服务（清理并标记为未初始化）"""
        definition = self._services.get(name)
        if definition is None:
            return

        if definition.initialized and definition.instance is not None:
            self._cleanup_service(definition)
            definition.instance = None
            definition.initialized = False
            if name in self._init_order:
                self._init_order.remove(name)

    def reset_all(self) -> None:
        """逆序重置所有服务"""
        for name in reversed(self._init_order.copy()):
            self.reset(name)
        self._init_order.clear()

    async def shutdown(self) -> None:
        """按初始化的逆序关闭服务"""
        logger.info("开始关闭所有服务...")
        for name in reversed(self._init_order.copy()):
            definition = self._services.get(name)
            if definition and definition.initialized:
                await asyncio.to_thread(self._cleanup_service, definition)
                definition.instance = None
                definition.initialized = False
                logger.debug(f"服务 {name} 已关闭")

        self._init_order.clear()
        logger.info("所有服务已关闭")

    def _cleanup_service(self, definition: ServiceDefinition) -> None:
        if definition.instance is None:
            return

        if definition.cleanup:
            try:
                definition.cleanup(definition.instance)
            except Exception as e:
                logger.warning(f"服务 {definition.name} 清理失败: {e}")
            return

        if hasattr(definition.instance, "close"):
            try:
                definition.instance.close()
            except Exception as e:
                logger.warning(f"服务 {definition.name} close() 失败: {e}")

    @property
    def registered_services(self) -> list[str]:
        """获取所有已注册的服务名称"""
        return list(self._services.keys())

    @property
    def initialized_services(self) -> list[str]:
        """获取所有已初始化的服务名称"""
        return self._init_order.copy()

    def __contains__(self, name: str) -> bool:
        return name in self._services


# ==================== 全局注册表 ====================

_registry: ServiceRegistry | None = None


def get_service_registry() -> ServiceRegistry:
    """获取全局服务注册表"""
    global _registry
    if _registry is None:
        _registry = ServiceRegistry()
    return _registry


def reset_service_registry() -> None:
    """重置全局服务注册表（用于测试）"""
    global _registry
    if _registry is not None:
        _registry.reset_all()
    _registry = ServiceRegistry()


# ==================== 服务注册辅助函数 ====================

def register_core_services() -> ServiceRegistry:
    """
    注册远端服务

    在应用启动时调用。已通过 set() 注入的实例（测试）不会被覆盖。
    使用延迟导入避免循环依赖。
    """
    registry = get_service_registry()

    def _register(name: str, factory: Callable[[], Any], **kwargs) -> None:
        if name not in registry:
            registry.register(name, factory, **kwargs)

    # ============ Store 层 ============
    def _create_note_store():
        from domains.note_hub.core.store import NoteStore
        return NoteStore()

    def _create_label_store():
        from domains.note_hub.core.label_store import LabelStore
        return LabelStore()

    _register("note_store", _create_note_store, cleanup=lambda s: s.close())
    _register("label_store", _create_label_store, cleanup=lambda s: s.close())

    # ============ Service 层 ============
    def _create_note_service():
        from domains.note_hub.services import NoteService
        return NoteService(registry.get("note_store"), registry.get("label_store"))

    def _create_label_service():
        from domains.note_hub.services import LabelService
        return LabelService(registry.get("label_store"))

    def _create_change_feed():
        from domains.note_hub.services import ChangeFeedService
        return ChangeFeedService(registry.get("note_store"), registry.get("label_store"))

    def _create_identity_provider():
        from domains.note_hub.core.identity import StaticTokenIdentityProvider
        return StaticTokenIdentityProvider.from_settings()

    _register("note_service", _create_note_service, dependencies=["note_store", "label_store"])
    _register("label_service", _create_label_service, dependencies=["label_store"])
    _register("change_feed", _create_change_feed, dependencies=["note_store", "label_store"])
    _register("identity_provider", _create_identity_provider)

    logger.info(f"已注册 {len(registry.registered_services)} 个服务")
    return registry


__all__ = [
    "ServiceRegistry",
    "ServiceDefinition",
    "get_service_registry",
    "reset_service_registry",
    "register_core_services",
]
