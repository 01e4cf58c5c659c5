"""Pydantic schemas for API requests and responses."""

from app.schemas.common import ApiResponse, PaginatedResponse
from app.schemas.label import Label, LabelCreate, LabelUpdate
from app.schemas.note import Note, NoteCreate, NoteUpdate, LabelRef
from app.schemas.sync import ChangeCursor

__all__ = [
    "ApiResponse",
    "PaginatedResponse",
    "Note",
    "NoteCreate",
    "NoteUpdate",
    "LabelRef",
    "Label",
    "LabelCreate",
    "LabelUpdate",
    "ChangeCursor",
]
