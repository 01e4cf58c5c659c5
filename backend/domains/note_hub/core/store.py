"""
笔记存储层 - PostgreSQL 数据源

继承 infra.BaseStore，复用连接管理。

- 创建按客户端 ID 幂等（INSERT ... ON CONFLICT (id) DO NOTHING）
- 笔记与其标签关联在同一事务中写入
- 删除为软删除，物理删除是单独的显式操作
- 变更查询严格大于给定时间戳，按 updated_at 升序返回，包含墓碑
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from domains.infra.base.store import BaseStore

from .models import ChangeCursor, Note
from .schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


# 笔记 + 标签聚合查询（WHERE / ORDER 由调用方拼接）
_NOTE_SELECT = """
    SELECT n.id, n.owner_id, n.title, n.body, n.is_deleted, n.deleted_at,
           n.created_at, n.updated_at,
           json_agg(json_build_object('id', l.id, 'name', l.name, 'color', l.color))
           FILTER (WHERE l.id IS NOT NULL) AS labels
    FROM notes n
    LEFT JOIN note_labels nl ON n.id = nl.note_id
    LEFT JOIN labels l ON nl.label_id = l.id
"""

# 按标签范围过滤：笔记当前关联了该标签
_LABEL_SCOPE = "n.id IN (SELECT note_id FROM note_labels WHERE label_id = %s)"


class NoteStore(BaseStore[Note]):
    """笔记存储层"""

    table_name = "notes"
    schema_sql = SCHEMA_SQL

    def _row_to_entity(self, row: Dict[str, Any]) -> Note:
        return Note.from_row(row)

    def _select(
        self,
        where: str,
        params: List[Any],
        order: str = "n.updated_at ASC, n.id ASC",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Note]:
        sql = f"{_NOTE_SELECT} WHERE {where} GROUP BY n.id ORDER BY {order}"
        params = list(params)
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        if offset is not None:
            sql += " OFFSET %s"
            params.append(offset)

        with self._cursor() as cursor:
            cursor.execute(sql, params)
            return [self._row_to_entity(dict(row)) for row in cursor.fetchall()]

    # ==================== 查询 ====================

    def get(self, owner_id: str, note_id: str) -> Optional[Note]:
        """获取单个笔记（包含墓碑）"""
        notes = self._select("n.id = %s AND n.owner_id = %s", [note_id, owner_id])
        return notes[0] if notes else None

    def get_owner(self, note_id: str) -> Optional[str]:
        """获取笔记所有者（不区分所有者，用于幂等创建的归属校验）"""
        with self._cursor() as cursor:
            cursor.execute('SELECT owner_id FROM notes WHERE id = %s', (note_id,))
            row = cursor.fetchone()
            return row['owner_id'] if row else None

    def list(
        self,
        owner_id: str,
        include_deleted: bool = False,
        label_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Note]:
        """
        按最后修改时间倒序列出笔记

        include_deleted=True 时只返回已删除的笔记（回收站视图）。
        """
        where = "n.owner_id = %s AND n.is_deleted = %s"
        params: List[Any] = [owner_id, include_deleted]
        if label_id:
            where += f" AND {_LABEL_SCOPE}"
            params.append(label_id)
        return self._select(where, params, order="n.updated_at DESC, n.id ASC", limit=limit, offset=offset)

    def search(
        self,
        owner_id: str,
        query: str,
        include_deleted: bool = False,
        limit: int = 100,
    ) -> List[Note]:
        """按标题或正文模糊搜索"""
        pattern = f"%{query}%"
        return self._select(
            "n.owner_id = %s AND n.is_deleted = %s AND (n.title ILIKE %s OR n.body ILIKE %s)",
            [owner_id, include_deleted, pattern, pattern],
            order="n.updated_at DESC, n.id ASC",
            limit=limit,
        )

    def changed_since(self, owner_id: str, since: datetime, label_id: Optional[str] = None) -> List[Note]:
        """updated_at 严格大于 since 的笔记（含墓碑），按 updated_at 升序"""
        where = "n.owner_id = %s AND n.updated_at > %s"
        params: List[Any] = [owner_id, since]
        if label_id:
            where += f" AND {_LABEL_SCOPE}"
            params.append(label_id)
        return self._select(where, params)

    def snapshot(self, owner_id: str, label_id: Optional[str] = None) -> List[Note]:
        """范围内全部笔记（含墓碑），按 updated_at 升序"""
        where = "n.owner_id = %s"
        params: List[Any] = [owner_id]
        if label_id:
            where += f" AND {_LABEL_SCOPE}"
            params.append(label_id)
        return self._select(where, params)

    def cursor(self, owner_id: str, label_id: Optional[str] = None) -> ChangeCursor:
        """读取当前变更游标（服务端时间 + 范围内最近修改时间）"""
        sql = "SELECT NOW() AS server_time, MAX(n.updated_at) AS last_change_at FROM notes n WHERE n.owner_id = %s"
        params: List[Any] = [owner_id]
        if label_id:
            sql += f" AND {_LABEL_SCOPE}"
            params.append(label_id)

        with self._cursor() as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
        return ChangeCursor(
            server_time=row['server_time'],
            last_change_at=row['last_change_at'],
            label_id=label_id,
        )

    # ==================== 写入 ====================

    def create(self, note: Note, label_ids: List[str]) -> bool:
        """
        按客户端 ID 插入笔记及其标签关联

        Returns:
            True 表示新建；False 表示该 ID 已存在（重放），未做任何修改
        """
        with self._cursor() as cursor:
            cursor.execute('''
                INSERT INTO notes (id, owner_id, title, body, created_at, updated_at)
                VALUES (%s, %s, %s, %s, NOW(), NOW())
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            ''', (note.id, note.owner_id, note.title, note.body))
            if cursor.fetchone() is None:
                return False

            self._insert_links(cursor, note.id, label_ids)
        return True

    def update(
        self,
        owner_id: str,
        note_id: str,
        fields: Dict[str, Any],
        label_ids: Optional[List[str]] = None,
    ) -> bool:
        """
        更新笔记字段，label_ids 不为 None 时整体替换标签关联

        fields 中 is_deleted 的变化会同步维护 deleted_at。
        """
        safe_fields = {k: v for k, v in fields.items() if k in ('title', 'body', 'is_deleted')}

        assignments = ['updated_at = NOW()']
        values: List[Any] = []
        for key, value in safe_fields.items():
            assignments.append(f'{key} = %s')
            values.append(value)
        if 'is_deleted' in safe_fields:
            assignments.append(
                'deleted_at = CASE WHEN %s THEN COALESCE(deleted_at, NOW()) ELSE NULL END'
            )
            values.append(bool(safe_fields['is_deleted']))

        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE notes SET {', '.join(assignments)} WHERE id = %s AND owner_id = %s RETURNING id",
                values + [note_id, owner_id]
            )
            if cursor.fetchone() is None:
                return False

            if label_ids is not None:
                cursor.execute('DELETE FROM note_labels WHERE note_id = %s', (note_id,))
                self._insert_links(cursor, note_id, label_ids)
        return True

    def soft_delete(self, owner_id: str, note_id: str) -> bool:
        """软删除；已删除的笔记保持原 deleted_at 不变"""
        with self._cursor() as cursor:
            cursor.execute('''
                UPDATE notes
                SET is_deleted = TRUE, deleted_at = NOW(), updated_at = NOW()
                WHERE id = %s AND owner_id = %s AND is_deleted = FALSE
                RETURNING id
            ''', (note_id, owner_id))
            return cursor.fetchone() is not None

    def restore(self, owner_id: str, note_id: str) -> bool:
        """恢复已软删除的笔记"""
        with self._cursor() as cursor:
            cursor.execute('''
                UPDATE notes
                SET is_deleted = FALSE, deleted_at = NULL, updated_at = NOW()
                WHERE id = %s AND owner_id = %s AND is_deleted = TRUE
                RETURNING id
            ''', (note_id, owner_id))
            return cursor.fetchone() is not None

    def purge(self, owner_id: str, note_id: str) -> bool:
        """物理删除（关联级联删除）"""
        with self._cursor() as cursor:
            cursor.execute(
                'DELETE FROM notes WHERE id = %s AND owner_id = %s',
                (note_id, owner_id)
            )
            return cursor.rowcount > 0

    def _insert_links(self, cursor, note_id: str, label_ids: List[str]) -> None:
        for label_id in dict.fromkeys(label_ids):
            cursor.execute(
                'INSERT INTO note_labels (note_id, label_id) VALUES (%s, %s) ON CONFLICT DO NOTHING',
                (note_id, label_id)
            )
