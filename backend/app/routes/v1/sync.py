"""Sync (change feed) API routes.

客户端拉取阶段使用：
- GET /sync/cursor    本轮开始时间（服务端时钟）
- GET /sync/changes   updated_at 严格大于 since 的笔记，升序，含墓碑
- GET /sync/snapshot  全量快照，含墓碑
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.schemas.common import ApiResponse
from app.schemas.note import Note
from app.schemas.sync import ChangeCursor
from app.core.deps import CurrentOwner, get_change_feed
from app.core.async_utils import run_sync
from domains.infra.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/cursor", response_model=ApiResponse[ChangeCursor])
async def get_cursor(
    owner_id: CurrentOwner,
    label_id: Optional[str] = Query(None, description="标签范围"),
    feed=Depends(get_change_feed),
):
    """获取当前变更游标"""
    cursor = await run_sync(feed.current_cursor, owner_id, label_id)
    return ApiResponse(data=ChangeCursor.model_validate(cursor))


@router.get("/changes", response_model=ApiResponse[List[Note]])
async def changes_since(
    owner_id: CurrentOwner,
    since: datetime = Query(..., description="上一次同步的开始时间"),
    label_id: Optional[str] = Query(None, description="标签范围"),
    feed=Depends(get_change_feed),
):
    """增量变更"""
    notes = await run_sync(feed.changes_since, owner_id, since, label_id)
    logger.info("changes_served", owner_id=owner_id, label_id=label_id, count=len(notes))
    return ApiResponse(data=[Note.from_domain(n) for n in notes])


@router.get("/snapshot", response_model=ApiResponse[List[Note]])
async def full_snapshot(
    owner_id: CurrentOwner,
    label_id: Optional[str] = Query(None, description="标签范围"),
    feed=Depends(get_change_feed),
):
    """全量快照（首次同步）"""
    notes = await run_sync(feed.full_snapshot, owner_id, label_id)
    logger.info("snapshot_served", owner_id=owner_id, label_id=label_id, count=len(notes))
    return ApiResponse(data=[Note.from_domain(n) for n in notes])
