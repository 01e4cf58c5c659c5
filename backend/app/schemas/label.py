"""Label-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class LabelCreate(BaseModel):
    """Label create request."""

    id: Optional[str] = Field(None, description="客户端生成的标签 ID", min_length=1, max_length=64)
    name: str = Field(..., description="标签名（同一用户下唯一）", min_length=1, max_length=100)
    color: Optional[str] = Field(None, description="颜色，默认 #808080", pattern=COLOR_PATTERN)


class LabelUpdate(BaseModel):
    """Label update request."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)


class Label(BaseModel):
    """Label model for API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    name: str
    color: str
    created_at: Optional[datetime] = None
    note_count: int = Field(0, description="未删除的笔记数")
