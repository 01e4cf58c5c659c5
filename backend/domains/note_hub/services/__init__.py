"""
服务层：笔记 / 标签业务逻辑与变更流
"""

from .change_feed import ChangeFeedService
from .label_service import LabelService
from .note_service import NoteService

__all__ = ['NoteService', 'LabelService', 'ChangeFeedService']
