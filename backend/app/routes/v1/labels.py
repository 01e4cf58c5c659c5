"""Label API routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Path

from app.schemas.common import ApiResponse
from app.schemas.label import Label, LabelCreate, LabelUpdate
from app.core.deps import CurrentOwner, get_label_or_404, get_label_service
from app.core.async_utils import run_sync

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=ApiResponse[List[Label]])
async def list_labels(owner_id: CurrentOwner, service=Depends(get_label_service)):
    """获取所有标签（按名称排序，带笔记数）"""
    labels = await run_sync(service.list_labels, owner_id)
    return ApiResponse(data=[Label.model_validate(label) for label in labels])


@router.post("", response_model=ApiResponse[Label])
async def create_label(
    request: LabelCreate,
    owner_id: CurrentOwner,
    service=Depends(get_label_service),
):
    """创建标签；携带 id 时按 id 幂等，名称重复返回 409"""
    label = await run_sync(
        service.create_label,
        owner_id,
        request.name,
        color=request.color,
        label_id=request.id,
    )
    return ApiResponse(data=Label.model_validate(label), message="创建成功")


@router.get("/{label_id}", response_model=ApiResponse[Label])
async def get_label(label=Depends(get_label_or_404)):
    """获取标签详情"""
    return ApiResponse(data=Label.model_validate(label))


@router.patch("/{label_id}", response_model=ApiResponse[Label])
async def update_label(
    request: LabelUpdate,
    owner_id: CurrentOwner,
    label_id: str = Path(..., description="标签 ID"),
    service=Depends(get_label_service),
):
    """重命名 / 修改颜色"""
    label = await run_sync(
        service.update_label, owner_id, label_id, request.model_dump(exclude_unset=True)
    )
    return ApiResponse(data=Label.model_validate(label), message="更新成功")


@router.delete("/{label_id}", response_model=ApiResponse[None])
async def delete_label(
    owner_id: CurrentOwner,
    label_id: str = Path(..., description="标签 ID"),
    service=Depends(get_label_service),
):
    """删除标签（关联笔记的标签集合随之变化，并进入变更流）"""
    await run_sync(service.delete_label, owner_id, label_id)
    return ApiResponse(message="已删除")
