"""Sync (change feed) schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChangeCursor(BaseModel):
    """变更游标"""

    model_config = ConfigDict(from_attributes=True)

    server_time: datetime = Field(..., description="服务端当前时间，客户端作为本轮同步开始时间")
    last_change_at: Optional[datetime] = Field(None, description="范围内最近一次修改时间")
    label_id: Optional[str] = None
