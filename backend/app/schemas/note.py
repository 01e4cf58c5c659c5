"""Note-related Pydantic schemas."""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field


class LabelRef(BaseModel):
    """笔记上携带的标签"""

    id: str
    name: str = ""
    color: str = "#808080"


class NoteCreate(BaseModel):
    """Note create request.

    id 由客户端生成；同一 id 重复提交返回已有笔记，不做修改。
    """

    id: Optional[str] = Field(None, description="客户端生成的笔记 ID", min_length=1, max_length=64)
    title: Optional[str] = Field(None, description="标题", max_length=500)
    body: Optional[str] = Field(None, description="正文")
    label_ids: List[str] = Field(default_factory=list, description="关联的标签 ID")


class NoteUpdate(BaseModel):
    """Note update request. 只更新请求中出现的字段"""

    title: Optional[str] = Field(None, max_length=500)
    body: Optional[str] = None
    label_ids: Optional[List[str]] = Field(None, description="整体替换标签关联")
    is_deleted: Optional[bool] = Field(None, description="软删除标记（后写入者生效）")


class Note(BaseModel):
    """Complete note model for API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="笔记 ID")
    owner_id: str
    title: Optional[str] = None
    body: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    labels: List[LabelRef] = Field(default_factory=list)
    label_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, note) -> "Note":
        data = note.to_dict()
        data["label_ids"] = note.label_ids
        return cls(**data)
