"""
核心层：数据模型、表结构、存储与身份校验
"""

from .identity import IdentityProvider, StaticTokenIdentityProvider
from .label_store import LabelStore
from .models import DEFAULT_LABEL_COLOR, ChangeCursor, Label, LabelRef, Note
from .schema import SCHEMA_SQL
from .store import NoteStore

__all__ = [
    'Note',
    'Label',
    'LabelRef',
    'ChangeCursor',
    'DEFAULT_LABEL_COLOR',
    'SCHEMA_SQL',
    'NoteStore',
    'LabelStore',
    'IdentityProvider',
    'StaticTokenIdentityProvider',
]
