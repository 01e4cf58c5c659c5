"""Note API routes.

提供笔记的 CRUD 接口，所有操作限定在当前 token 对应的所有者范围内。

支持:
- 按客户端 ID 幂等创建
- 软删除 / 恢复 / 物理删除
- 搜索、按标签列出

NOTE: 所有同步服务调用都使用 run_sync 包装，避免阻塞 event loop。
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Path

from app.schemas.common import ApiResponse, PaginatedResponse
from app.schemas.note import Note, NoteCreate, NoteUpdate
from app.core.deps import CurrentOwner, get_note_or_404, get_note_service
from app.core.async_utils import run_sync

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=ApiResponse[PaginatedResponse[Note]])
async def list_notes(
    owner_id: CurrentOwner,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    include_deleted: bool = Query(False, description="为 true 时只返回回收站中的笔记"),
    service=Depends(get_note_service),
):
    """获取笔记列表（按最后修改时间倒序）"""
    notes = await run_sync(
        service.list_notes,
        owner_id,
        include_deleted=include_deleted,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    total = await run_sync(service.count_notes, owner_id, include_deleted=include_deleted)

    return ApiResponse(
        data=PaginatedResponse.create(
            items=[Note.from_domain(n) for n in notes],
            total=total,
            page=page,
            page_size=page_size,
        )
    )


@router.post("", response_model=ApiResponse[Note])
async def create_note(
    request: NoteCreate,
    owner_id: CurrentOwner,
    service=Depends(get_note_service),
):
    """
    创建笔记

    携带 id 时按 id 幂等：重复提交返回已有笔记。
    """
    note = await run_sync(
        service.create_note,
        owner_id,
        title=request.title,
        body=request.body,
        label_ids=request.label_ids,
        note_id=request.id,
    )
    return ApiResponse(data=Note.from_domain(note), message="创建成功")


@router.get("/search", response_model=ApiResponse[List[Note]])
async def search_notes(
    owner_id: CurrentOwner,
    q: str = Query(..., min_length=1, description="搜索关键词"),
    limit: int = Query(100, ge=1, le=500),
    service=Depends(get_note_service),
):
    """按标题或正文搜索"""
    notes = await run_sync(service.search_notes, owner_id, q, limit=limit)
    return ApiResponse(data=[Note.from_domain(n) for n in notes])


@router.get("/label/{label_id}", response_model=ApiResponse[List[Note]])
async def notes_by_label(
    owner_id: CurrentOwner,
    label_id: str = Path(..., description="标签 ID"),
    service=Depends(get_note_service),
):
    """获取带有某个标签的笔记"""
    notes = await run_sync(service.notes_by_label, owner_id, label_id)
    return ApiResponse(data=[Note.from_domain(n) for n in notes])


@router.get("/{note_id}", response_model=ApiResponse[Note])
async def get_note(note=Depends(get_note_or_404)):
    """获取笔记详情（包含已删除的笔记）"""
    return ApiResponse(data=Note.from_domain(note))


@router.patch("/{note_id}", response_model=ApiResponse[Note])
async def update_note(
    request: NoteUpdate,
    owner_id: CurrentOwner,
    note_id: str = Path(..., description="笔记 ID"),
    service=Depends(get_note_service),
):
    """更新笔记（只更新请求中出现的字段）"""
    fields = request.model_dump(exclude_unset=True)
    label_ids = fields.pop("label_ids", None)
    if fields.get("is_deleted") is None:
        fields.pop("is_deleted", None)

    note = await run_sync(service.update_note, owner_id, note_id, fields, label_ids=label_ids)
    return ApiResponse(data=Note.from_domain(note), message="更新成功")


@router.delete("/{note_id}", response_model=ApiResponse[Note])
async def delete_note(
    owner_id: CurrentOwner,
    note_id: str = Path(..., description="笔记 ID"),
    service=Depends(get_note_service),
):
    """软删除（重复删除不报错）"""
    note = await run_sync(service.delete_note, owner_id, note_id)
    return ApiResponse(data=Note.from_domain(note), message="已删除")


@router.post("/{note_id}/restore", response_model=ApiResponse[Note])
async def restore_note(
    owner_id: CurrentOwner,
    note_id: str = Path(..., description="笔记 ID"),
    service=Depends(get_note_service),
):
    """从回收站恢复"""
    note = await run_sync(service.restore_note, owner_id, note_id)
    return ApiResponse(data=Note.from_domain(note), message="已恢复")


@router.delete("/{note_id}/permanent", response_model=ApiResponse[None])
async def purge_note(
    owner_id: CurrentOwner,
    note_id: str = Path(..., description="笔记 ID"),
    service=Depends(get_note_service),
):
    """物理删除（不可恢复）"""
    await run_sync(service.purge_note, owner_id, note_id)
    return ApiResponse(message="已永久删除")
