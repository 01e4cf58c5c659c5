"""
标签存储层 - PostgreSQL 数据源

标签没有墓碑：删除是物理删除，关联级联删除。
删除前先刷新关联笔记的 updated_at，使关联变化进入变更流。
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

import psycopg2
from psycopg2 import errorcodes

from domains.core.exceptions import LabelNameConflictError
from domains.infra.base.store import BaseStore

from .models import DEFAULT_LABEL_COLOR, Label
from .schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


_LABEL_SELECT = """
    SELECT l.id, l.owner_id, l.name, l.color, l.created_at,
           COUNT(n.id) AS note_count
    FROM labels l
    LEFT JOIN note_labels nl ON l.id = nl.label_id
    LEFT JOIN notes n ON nl.note_id = n.id AND n.is_deleted = FALSE
"""


class LabelStore(BaseStore[Label]):
    """标签存储层"""

    table_name = "labels"
    schema_sql = SCHEMA_SQL

    def _row_to_entity(self, row: Dict[str, Any]) -> Label:
        return Label.from_row(row)

    def list(self, owner_id: str) -> List[Label]:
        """按名称列出标签（带未删除笔记数）"""
        with self._cursor() as cursor:
            cursor.execute(
                f"{_LABEL_SELECT} WHERE l.owner_id = %s GROUP BY l.id ORDER BY l.name ASC",
                (owner_id,)
            )
            return [self._row_to_entity(dict(row)) for row in cursor.fetchall()]

    def get(self, owner_id: str, label_id: str) -> Optional[Label]:
        with self._cursor() as cursor:
            cursor.execute(
                f"{_LABEL_SELECT} WHERE l.id = %s AND l.owner_id = %s GROUP BY l.id",
                (label_id, owner_id)
            )
            row = cursor.fetchone()
            return self._row_to_entity(dict(row)) if row else None

    def get_owner(self, label_id: str) -> Optional[str]:
        with self._cursor() as cursor:
            cursor.execute('SELECT owner_id FROM labels WHERE id = %s', (label_id,))
            row = cursor.fetchone()
            return row['owner_id'] if row else None

    def existing_ids(self, owner_id: str, label_ids: Iterable[str]) -> Set[str]:
        """返回 label_ids 中属于该所有者的标签 ID"""
        ids = list(dict.fromkeys(label_ids))
        if not ids:
            return set()
        with self._cursor() as cursor:
            cursor.execute(
                'SELECT id FROM labels WHERE owner_id = %s AND id = ANY(%s)',
                (owner_id, ids)
            )
            return {row['id'] for row in cursor.fetchall()}

    def create(self, label: Label) -> bool:
        """
        按 ID 插入标签

        Returns:
            True 表示新建；False 表示该 ID 已存在

        Raises:
            LabelNameConflictError: 同一所有者下名称重复
        """
        try:
            with self._cursor() as cursor:
                cursor.execute('''
                    INSERT INTO labels (id, owner_id, name, color, created_at)
                    VALUES (%s, %s, %s, %s, NOW())
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                ''', (label.id, label.owner_id, label.name, label.color or DEFAULT_LABEL_COLOR))
                return cursor.fetchone() is not None
        except psycopg2.IntegrityError as e:
            if e.pgcode == errorcodes.UNIQUE_VIOLATION:
                raise LabelNameConflictError(label.name) from e
            raise

    def update(self, owner_id: str, label_id: str, fields: Dict[str, Any]) -> bool:
        """更新名称 / 颜色"""
        safe_fields = {k: v for k, v in fields.items() if k in ('name', 'color')}
        if not safe_fields:
            return self.get_owned(owner_id, label_id) is not None

        set_clause = ', '.join(f'{k} = %s' for k in safe_fields)
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    f'UPDATE labels SET {set_clause} WHERE id = %s AND owner_id = %s RETURNING id',
                    list(safe_fields.values()) + [label_id, owner_id]
                )
                updated = cursor.fetchone() is not None
                if updated:
                    # 关联笔记上携带的标签名 / 颜色也随之变化
                    cursor.execute('''
                        UPDATE notes SET updated_at = NOW()
                        WHERE id IN (SELECT note_id FROM note_labels WHERE label_id = %s)
                    ''', (label_id,))
                return updated
        except psycopg2.IntegrityError as e:
            if e.pgcode == errorcodes.UNIQUE_VIOLATION:
                raise LabelNameConflictError(safe_fields.get('name', '')) from e
            raise

    def delete(self, owner_id: str, label_id: str) -> bool:
        """刷新关联笔记的 updated_at 后物理删除标签"""
        with self._cursor() as cursor:
            cursor.execute('''
                UPDATE notes SET updated_at = NOW()
                WHERE owner_id = %s
                  AND id IN (SELECT note_id FROM note_labels WHERE label_id = %s)
            ''', (owner_id, label_id))
            touched = cursor.rowcount
            cursor.execute(
                'DELETE FROM labels WHERE id = %s AND owner_id = %s',
                (label_id, owner_id)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"label_deleted: {label_id}, touched_notes={touched}")
        return deleted
