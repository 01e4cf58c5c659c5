"""Dependency injection for FastAPI routes.

使用 ServiceRegistry 统一管理服务生命周期。
测试时通过 registry.set() 替换存储层或身份校验。
"""

from typing import Annotated, Optional

from fastapi import Depends, Path
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.async_utils import run_sync
from domains.core import AuthenticationError, get_service_registry, register_core_services

_bearer = HTTPBearer(auto_error=False)


# ============================================================================
# 初始化服务注册表
# ============================================================================

def _ensure_services_registered():
    """确保服务已注册（延迟初始化，已注入的实例不会被覆盖）"""
    registry = get_service_registry()
    if "note_service" not in registry:
        register_core_services()
    return registry


# ============================================================================
# Service getters - 使用 ServiceRegistry
# ============================================================================

def get_note_service():
    """Get NoteService singleton instance."""
    return _ensure_services_registered().get("note_service")


def get_label_service():
    """Get LabelService singleton instance."""
    return _ensure_services_registered().get("label_service")


def get_change_feed():
    """Get ChangeFeedService singleton instance."""
    return _ensure_services_registered().get("change_feed")


def get_identity_provider():
    """Get IdentityProvider singleton instance."""
    return _ensure_services_registered().get("identity_provider")


# ============================================================================
# 认证
# ============================================================================

async def get_current_owner(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)],
    provider=Depends(get_identity_provider),
) -> str:
    """校验 bearer token，返回所有者 ID"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("缺少 bearer token")
    owner_id = provider.authenticate(credentials.credentials)
    if owner_id is None:
        raise AuthenticationError("token 无效或已过期")
    return owner_id


CurrentOwner = Annotated[str, Depends(get_current_owner)]


# ============================================================================
# Resource-or-404 helpers
# ============================================================================

async def get_note_or_404(
    note_id: Annotated[str, Path(description="笔记ID")],
    owner_id: CurrentOwner,
    service=Depends(get_note_service),
):
    """获取笔记（含墓碑），不存在时抛出 NoteNotFoundError -> 404"""
    return await run_sync(service.get_note, owner_id, note_id)


async def get_label_or_404(
    label_id: Annotated[str, Path(description="标签ID")],
    owner_id: CurrentOwner,
    service=Depends(get_label_service),
):
    """获取标签，不存在时抛出 LabelNotFoundError -> 404"""
    return await run_sync(service.get_label, owner_id, label_id)
