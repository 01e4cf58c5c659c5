"""
本地副本存储 - SQLite

设备上的离线副本。所有用户修改先写入这里，永远不依赖网络。

- 一个写操作（字段修改 + 标签关联 + 状态迁移）在同一个 SQLite 事务内完成
- 查询默认不返回软删除的笔记和待删除的标签
- 单连接 + 可重入锁，调用线程与后台同步线程共用
- 所有 sqlite3 异常包装为 LocalStorageError
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from domains.core.exceptions import LabelNotFoundError, LocalStorageError, NoteNotFoundError

from .models import (
    LocalLabel,
    LocalNote,
    RemoteLabel,
    RemoteNote,
    SyncCursor,
    SyncEvent,
    SyncStatus,
    utcnow,
)
from .state_machine import REMOVED, transition

logger = logging.getLogger(__name__)


REPLICA_SCHEMA = """
CREATE TABLE IF NOT EXISTS labels (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    color TEXT NOT NULL DEFAULT '#808080',
    created_at TEXT NOT NULL,
    sync_status TEXT NOT NULL,
    revision INTEGER NOT NULL DEFAULT 0,
    rejection_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT,
    body TEXT,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    deleted_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sync_status TEXT NOT NULL,
    status_before_delete TEXT,
    revision INTEGER NOT NULL DEFAULT 0,
    rejection_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);

CREATE INDEX IF NOT EXISTS idx_notes_owner_status ON notes (owner_id, sync_status);

CREATE TABLE IF NOT EXISTS note_labels (
    note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    label_id TEXT NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
    PRIMARY KEY (note_id, label_id)
);

CREATE TABLE IF NOT EXISTS sync_cursors (
    owner_id TEXT NOT NULL,
    scope TEXT NOT NULL,
    last_change_seen TEXT,
    last_synced_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, scope)
);
"""

_PENDING = tuple(s.value for s in SyncStatus if s.is_pending)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """统一为 UTC 微秒精度字符串，保证按字符串比较即按时间比较"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _status(value: Optional[str]) -> Optional[SyncStatus]:
    return SyncStatus(value) if value else None


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ReplicaStore:
    """本地副本存储"""

    def __init__(self, path: Union[str, Path] = ":memory:"):
        """
        Args:
            path: SQLite 文件路径，":memory:" 为内存库
        """
        self.path = str(path)
        self._lock = threading.RLock()
        self._depth = 0
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(REPLICA_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise LocalStorageError("open", e) from e
        logger.info(f"replica_opened: {self.path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def _transaction(self, operation: str):
        """
        事务上下文

        嵌套调用合并到最外层事务；正常退出提交，异常回滚。
        """
        with self._lock:
            outer = self._depth == 0
            try:
                if outer:
                    self._conn.execute("BEGIN IMMEDIATE")
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                if outer:
                    self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(outer)
                raise LocalStorageError(operation, e) from e
            except Exception:
                self._rollback(outer)
                raise

    def _rollback(self, outer: bool) -> None:
        if not outer:
            return
        try:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"replica_rollback_failed: {e}")

    # ==================== 行转换 ====================

    def _label_ids(self, conn: sqlite3.Connection, note_id: str) -> List[str]:
        rows = conn.execute('''
            SELECT l.id FROM note_labels nl
            JOIN labels l ON nl.label_id = l.id
            WHERE nl.note_id = ? AND l.sync_status != ?
            ORDER BY l.name
        ''', (note_id, SyncStatus.PENDING_DELETE.value)).fetchall()
        return [row['id'] for row in rows]

    def _row_to_note(self, conn: sqlite3.Connection, row: sqlite3.Row) -> LocalNote:
        return LocalNote(
            id=row['id'],
            owner_id=row['owner_id'],
            title=row['title'],
            body=row['body'],
            is_deleted=bool(row['is_deleted']),
            deleted_at=_dt(row['deleted_at']),
            created_at=_dt(row['created_at']),
            updated_at=_dt(row['updated_at']),
            sync_status=SyncStatus(row['sync_status']),
            status_before_delete=_status(row['status_before_delete']),
            revision=row['revision'],
            rejection_count=row['rejection_count'],
            last_error=row['last_error'],
            label_ids=self._label_ids(conn, row['id']),
        )

    @staticmethod
    def _row_to_label(row: sqlite3.Row) -> LocalLabel:
        return LocalLabel(
            id=row['id'],
            owner_id=row['owner_id'],
            name=row['name'],
            color=row['color'],
            created_at=_dt(row['created_at']),
            sync_status=SyncStatus(row['sync_status']),
            revision=row['revision'],
            rejection_count=row['rejection_count'],
            last_error=row['last_error'],
        )

    def _notes_where(self, operation: str, where: str, params: Iterable[Any], order: str) -> List[LocalNote]:
        with self._transaction(operation) as conn:
            rows = conn.execute(f'SELECT * FROM notes WHERE {where} ORDER BY {order}', tuple(params)).fetchall()
            return [self._row_to_note(conn, row) for row in rows]

    def _note_row(self, conn: sqlite3.Connection, owner_id: str, note_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            'SELECT * FROM notes WHERE id = ? AND owner_id = ?', (note_id, owner_id)
        ).fetchone()

    def _label_row(self, conn: sqlite3.Connection, owner_id: str, label_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            'SELECT * FROM labels WHERE id = ? AND owner_id = ?', (label_id, owner_id)
        ).fetchone()

    def _set_links(self, conn: sqlite3.Connection, owner_id: str, note_id: str, label_ids: Iterable[str]) -> None:
        """整体替换笔记的标签关联，只关联本地存在且未待删除的标签"""
        conn.execute('DELETE FROM note_labels WHERE note_id = ?', (note_id,))
        for label_id in dict.fromkeys(label_ids):
            row = self._label_row(conn, owner_id, label_id)
            if row is None or row['sync_status'] == SyncStatus.PENDING_DELETE.value:
                logger.debug(f"replica_link_skipped: note={note_id} label={label_id}")
                continue
            conn.execute(
                'INSERT OR IGNORE INTO note_labels (note_id, label_id) VALUES (?, ?)',
                (note_id, label_id)
            )

    # ==================== 笔记查询 ====================

    def get_note(self, owner_id: str, note_id: str, include_deleted: bool = False) -> Optional[LocalNote]:
        with self._transaction("get_note") as conn:
            row = self._note_row(conn, owner_id, note_id)
            if row is None or (row['is_deleted'] and not include_deleted):
                return None
            return self._row_to_note(conn, row)

    def list_notes(self, owner_id: str, include_deleted: bool = False) -> List[LocalNote]:
        """按最后修改时间倒序列出笔记"""
        where = 'owner_id = ?' if include_deleted else 'owner_id = ? AND is_deleted = 0'
        return self._notes_where("list_notes", where, (owner_id,), 'updated_at DESC, id')

    def list_deleted_notes(self, owner_id: str) -> List[LocalNote]:
        """回收站：已软删除的笔记"""
        return self._notes_where(
            "list_deleted_notes", 'owner_id = ? AND is_deleted = 1', (owner_id,), 'deleted_at DESC, id'
        )

    def notes_by_label(self, owner_id: str, label_id: str, include_deleted: bool = False) -> List[LocalNote]:
        where = 'owner_id = ? AND id IN (SELECT note_id FROM note_labels WHERE label_id = ?)'
        if not include_deleted:
            where += ' AND is_deleted = 0'
        return self._notes_where("notes_by_label", where, (owner_id, label_id), 'updated_at DESC, id')

    def search_notes(self, owner_id: str, query: str, include_deleted: bool = False) -> List[LocalNote]:
        """标题或正文包含 query（不区分大小写）"""
        pattern = f"%{_escape_like(query.lower())}%"
        where = (
            "owner_id = ? AND (LOWER(COALESCE(title, '')) LIKE ? ESCAPE '\\' "
            "OR LOWER(COALESCE(body, '')) LIKE ? ESCAPE '\\')"
        )
        if not include_deleted:
            where += ' AND is_deleted = 0'
        return self._notes_where("search_notes", where, (owner_id, pattern, pattern), 'updated_at DESC, id')

    def pending_notes(self, owner_id: str) -> List[LocalNote]:
        """待推送的笔记（含待删除的墓碑），按修改顺序"""
        placeholders = ', '.join('?' for _ in _PENDING)
        return self._notes_where(
            "pending_notes",
            f'owner_id = ? AND sync_status IN ({placeholders})',
            (owner_id, *_PENDING),
            'updated_at ASC, rowid ASC',
        )

    # ==================== 笔记写入 ====================

    def insert_note(self, note: LocalNote, label_ids: Iterable[str] = ()) -> LocalNote:
        """新建本地笔记（状态 pending_create）"""
        status = transition(None, SyncEvent.CREATE_LOCAL)
        now = _ts(utcnow())
        with self._transaction("insert_note") as conn:
            conn.execute('''
                INSERT INTO notes (id, owner_id, title, body, is_deleted, created_at, updated_at,
                                   sync_status, revision, rejection_count)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, 1, 0)
            ''', (note.id, note.owner_id, note.title, note.body, now, now, status.value))
            self._set_links(conn, note.owner_id, note.id, label_ids)
            return self._row_to_note(conn, self._note_row(conn, note.owner_id, note.id))

    def update_note(
        self,
        owner_id: str,
        note_id: str,
        fields: Dict[str, Any],
        label_ids: Optional[Iterable[str]] = None,
    ) -> LocalNote:
        """
        修改标题 / 正文，label_ids 不为 None 时整体替换关联

        Raises:
            NoteNotFoundError: 笔记不存在或已删除
        """
        updates = {k: v for k, v in fields.items() if k in ('title', 'body')}
        with self._transaction("update_note") as conn:
            row = self._note_row(conn, owner_id, note_id)
            if row is None or row['is_deleted']:
                raise NoteNotFoundError(note_id)

            status = transition(SyncStatus(row['sync_status']), SyncEvent.UPDATE)
            assignments = ''.join(f'{k} = ?, ' for k in updates)
            conn.execute(f'''
                UPDATE notes SET {assignments}
                    updated_at = ?, sync_status = ?, revision = revision + 1,
                    rejection_count = 0, last_error = NULL
                WHERE id = ?
            ''', (*updates.values(), _ts(utcnow()), status.value, note_id))
            if label_ids is not None:
                self._set_links(conn, owner_id, note_id, label_ids)
            return self._row_to_note(conn, self._note_row(conn, owner_id, note_id))

    def delete_note(self, owner_id: str, note_id: str) -> Optional[LocalNote]:
        """
        软删除

        从未推送过的笔记直接物理删除并返回 None；已删除的笔记原样返回。
        """
        with self._transaction("delete_note") as conn:
            row = self._note_row(conn, owner_id, note_id)
            if row is None:
                raise NoteNotFoundError(note_id)
            if row['is_deleted']:
                return self._row_to_note(conn, row)

            current = SyncStatus(row['sync_status'])
            target = transition(current, SyncEvent.DELETE)
            if target is REMOVED:
                conn.execute('DELETE FROM notes WHERE id = ?', (note_id,))
                logger.info(f"replica_note_discarded: {note_id}")
                return None

            now = _ts(utcnow())
            conn.execute('''
                UPDATE notes
                SET is_deleted = 1, deleted_at = ?, updated_at = ?, sync_status = ?,
                    status_before_delete = ?, revision = revision + 1,
                    rejection_count = 0, last_error = NULL
                WHERE id = ?
            ''', (now, now, target.value, current.value, note_id))
            return self._row_to_note(conn, self._note_row(conn, owner_id, note_id))

    def restore_note(self, owner_id: str, note_id: str) -> LocalNote:
        """恢复软删除的笔记；未删除的笔记原样返回"""
        with self._transaction("restore_note") as conn:
            row = self._note_row(conn, owner_id, note_id)
            if row is None:
                raise NoteNotFoundError(note_id)
            if not row['is_deleted']:
                return self._row_to_note(conn, row)

            target = transition(
                SyncStatus(row['sync_status']),
                SyncEvent.RESTORE,
                _status(row['status_before_delete']),
            )
            conn.execute('''
                UPDATE notes
                SET is_deleted = 0, deleted_at = NULL, updated_at = ?, sync_status = ?,
                    status_before_delete = NULL, revision = revision + 1,
                    rejection_count = 0, last_error = NULL
                WHERE id = ?
            ''', (_ts(utcnow()), target.value, note_id))
            return self._row_to_note(conn, self._note_row(conn, owner_id, note_id))

    def purge_note(self, owner_id: str, note_id: str) -> bool:
        """物理删除（只影响本地，不会推送）"""
        with self._transaction("purge_note") as conn:
            cursor = conn.execute('DELETE FROM notes WHERE id = ? AND owner_id = ?', (note_id, owner_id))
            return cursor.rowcount > 0

    def mark_note_synced(
        self,
        owner_id: str,
        note_id: str,
        revision: int,
        event: SyncEvent = SyncEvent.PUSH_SUCCEEDED,
        remote_updated_at: Optional[datetime] = None,
    ) -> bool:
        """
        推送成功后标记为 synced

        只有本地 revision 仍等于推送时读取的 revision 才会生效；
        推送期间发生的本地修改保持待推送。
        """
        with self._transaction("mark_note_synced") as conn:
            row = self._note_row(conn, owner_id, note_id)
            if row is None or row['revision'] != revision:
                return False
            target = transition(SyncStatus(row['sync_status']), event)
            conn.execute('''
                UPDATE notes
                SET sync_status = ?, status_before_delete = NULL,
                    rejection_count = 0, last_error = NULL,
                    updated_at = COALESCE(?, updated_at)
                WHERE id = ? AND revision = ?
            ''', (target.value, _ts(remote_updated_at), note_id, revision))
            return True

    def record_note_failure(self, owner_id: str, note_id: str, error: str, rejected: bool) -> int:
        """记录推送失败，状态保持不变；rejected 时累加拒绝次数。返回当前拒绝次数"""
        with self._transaction("record_note_failure") as conn:
            row = self._note_row(conn, owner_id, note_id)
            if row is None:
                return 0
            transition(SyncStatus(row['sync_status']), SyncEvent.PUSH_FAILED)
            count = row['rejection_count'] + (1 if rejected else 0)
            conn.execute(
                'UPDATE notes SET rejection_count = ?, last_error = ? WHERE id = ?',
                (count, error, note_id)
            )
            return count

    # ==================== 标签 ====================

    def get_label(self, owner_id: str, label_id: str, include_deleted: bool = False) -> Optional[LocalLabel]:
        with self._transaction("get_label") as conn:
            row = self._label_row(conn, owner_id, label_id)
        if row is None:
            return None
        if row['sync_status'] == SyncStatus.PENDING_DELETE.value and not include_deleted:
            return None
        return self._row_to_label(row)

    def list_labels(self, owner_id: str, include_deleted: bool = False) -> List[LocalLabel]:
        sql = 'SELECT * FROM labels WHERE owner_id = ?'
        params: Tuple[Any, ...] = (owner_id,)
        if not include_deleted:
            sql += ' AND sync_status != ?'
            params += (SyncStatus.PENDING_DELETE.value,)
        with self._transaction("list_labels") as conn:
            rows = conn.execute(sql + ' ORDER BY name, id', params).fetchall()
        return [self._row_to_label(row) for row in rows]

    def find_label_by_name(self, owner_id: str, name: str) -> Optional[LocalLabel]:
        with self._transaction("find_label_by_name") as conn:
            row = conn.execute(
                'SELECT * FROM labels WHERE owner_id = ? AND name = ? AND sync_status != ?',
                (owner_id, name, SyncStatus.PENDING_DELETE.value)
            ).fetchone()
        return self._row_to_label(row) if row else None

    def pending_labels(self, owner_id: str) -> List[LocalLabel]:
        placeholders = ', '.join('?' for _ in _PENDING)
        with self._transaction("pending_labels") as conn:
            rows = conn.execute(
                f'SELECT * FROM labels WHERE owner_id = ? AND sync_status IN ({placeholders}) '
                f'ORDER BY created_at ASC, rowid ASC',
                (owner_id, *_PENDING)
            ).fetchall()
        return [self._row_to_label(row) for row in rows]

    def synced_label_revisions(self, owner_id: str) -> Dict[str, int]:
        """已同步标签的 {id: revision}，拉取前取一份用于合并时判断删除"""
        with self._transaction("synced_label_revisions") as conn:
            rows = conn.execute(
                'SELECT id, revision FROM labels WHERE owner_id = ? AND sync_status = ?',
                (owner_id, SyncStatus.SYNCED.value)
            ).fetchall()
        return {row['id']: row['revision'] for row in rows}

    def insert_label(self, label: LocalLabel) -> LocalLabel:
        status = transition(None, SyncEvent.CREATE_LOCAL)
        with self._transaction("insert_label") as conn:
            conn.execute('''
                INSERT INTO labels (id, owner_id, name, color, created_at, sync_status, revision)
                VALUES (?, ?, ?, ?, ?, ?, 1)
            ''', (label.id, label.owner_id, label.name, label.color, _ts(utcnow()), status.value))
            return self._row_to_label(self._label_row(conn, label.owner_id, label.id))

    def update_label(self, owner_id: str, label_id: str, fields: Dict[str, Any]) -> LocalLabel:
        updates = {k: v for k, v in fields.items() if k in ('name', 'color') and v is not None}
        with self._transaction("update_label") as conn:
            row = self._label_row(conn, owner_id, label_id)
            if row is None or row['sync_status'] == SyncStatus.PENDING_DELETE.value:
                raise LabelNotFoundError(label_id)

            status = transition(SyncStatus(row['sync_status']), SyncEvent.UPDATE)
            assignments = ''.join(f'{k} = ?, ' for k in updates)
            conn.execute(f'''
                UPDATE labels SET {assignments}
                    sync_status = ?, revision = revision + 1, rejection_count = 0, last_error = NULL
                WHERE id = ?
            ''', (*updates.values(), status.value, label_id))
            return self._row_to_label(self._label_row(conn, owner_id, label_id))

    def delete_label(self, owner_id: str, label_id: str) -> Optional[LocalLabel]:
        """
        删除标签，关联立即移除

        从未推送过的标签直接物理删除并返回 None。
        """
        with self._transaction("delete_label") as conn:
            row = self._label_row(conn, owner_id, label_id)
            if row is None or row['sync_status'] == SyncStatus.PENDING_DELETE.value:
                raise LabelNotFoundError(label_id)

            target = transition(SyncStatus(row['sync_status']), SyncEvent.DELETE)
            if target is REMOVED:
                conn.execute('DELETE FROM labels WHERE id = ?', (label_id,))
                return None

            conn.execute('DELETE FROM note_labels WHERE label_id = ?', (label_id,))
            conn.execute('''
                UPDATE labels
                SET sync_status = ?, revision = revision + 1, rejection_count = 0, last_error = NULL
                WHERE id = ?
            ''', (target.value, label_id))
            return self._row_to_label(self._label_row(conn, owner_id, label_id))

    def mark_label_synced(
        self,
        owner_id: str,
        label_id: str,
        revision: int,
        event: SyncEvent = SyncEvent.PUSH_SUCCEEDED,
    ) -> bool:
        """
        推送成功后标记为 synced；待删除的标签推送成功后物理删除

        revision 不一致时不做任何修改。
        """
        with self._transaction("mark_label_synced") as conn:
            row = self._label_row(conn, owner_id, label_id)
            if row is None or row['revision'] != revision:
                return False
            current = SyncStatus(row['sync_status'])
            target = transition(current, event)
            if current is SyncStatus.PENDING_DELETE:
                conn.execute('DELETE FROM labels WHERE id = ?', (label_id,))
                return True
            conn.execute(
                'UPDATE labels SET sync_status = ?, rejection_count = 0, last_error = NULL WHERE id = ?',
                (target.value, label_id)
            )
            return True

    def record_label_failure(self, owner_id: str, label_id: str, error: str, rejected: bool) -> int:
        with self._transaction("record_label_failure") as conn:
            row = self._label_row(conn, owner_id, label_id)
            if row is None:
                return 0
            transition(SyncStatus(row['sync_status']), SyncEvent.PUSH_FAILED)
            count = row['rejection_count'] + (1 if rejected else 0)
            conn.execute(
                'UPDATE labels SET rejection_count = ?, last_error = ? WHERE id = ?',
                (count, error, label_id)
            )
            return count

    # ==================== 拉取合并 ====================

    def apply_remote_labels(
        self,
        owner_id: str,
        labels: List[RemoteLabel],
        protect_pending: bool = True,
        synced_before_pull: Optional[Dict[str, int]] = None,
    ) -> Tuple[int, int, int]:
        """
        用远端标签列表对齐本地标签

        - 远端存在的标签整体覆盖本地（本地待推送且开启保护时跳过）
        - 本地已同步、远端已不存在的标签被删除

        synced_before_pull 为拉取前已同步标签的 {id: revision}。给出时只删除其中
        revision 未变的标签；拉取之后才建立或修改并推送成功的标签不在远端列表里，保留。

        Returns:
            (覆盖数, 删除数, 跳过数)
        """
        applied = removed = skipped = 0
        remote_ids = {label.id for label in labels}
        with self._transaction("apply_remote_labels") as conn:
            for label in labels:
                row = self._label_row(conn, owner_id, label.id)
                if row is not None and protect_pending and row['sync_status'] != SyncStatus.SYNCED.value:
                    skipped += 1
                    continue
                conn.execute('''
                    INSERT INTO labels (id, owner_id, name, color, created_at, sync_status, revision)
                    VALUES (?, ?, ?, ?, ?, ?, 1)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name, color = excluded.color,
                        created_at = excluded.created_at, sync_status = excluded.sync_status,
                        revision = labels.revision + 1, rejection_count = 0, last_error = NULL
                ''', (
                    label.id, owner_id, label.name, label.color,
                    _ts(label.created_at or utcnow()), SyncStatus.SYNCED.value,
                ))
                applied += 1

            rows = conn.execute(
                'SELECT id, revision FROM labels WHERE owner_id = ? AND sync_status = ?',
                (owner_id, SyncStatus.SYNCED.value)
            ).fetchall()
            for row in rows:
                if row['id'] in remote_ids:
                    continue
                if synced_before_pull is not None and synced_before_pull.get(row['id']) != row['revision']:
                    logger.debug(f"replica_label_kept: {row['id']} changed after pull")
                    continue
                conn.execute('DELETE FROM labels WHERE id = ?', (row['id'],))
                removed += 1
        return applied, removed, skipped

    def apply_remote_note(self, owner_id: str, note: RemoteNote, protect_pending: bool = True) -> bool:
        """
        用远端笔记整体覆盖本地副本（含墓碑标记），标签关联替换为远端的集合

        Returns:
            False 表示本地有待推送的修改而被跳过
        """
        with self._transaction("apply_remote_note") as conn:
            row = self._note_row(conn, owner_id, note.id)
            if row is not None and protect_pending and row['sync_status'] != SyncStatus.SYNCED.value:
                return False

            now = utcnow()
            conn.execute('''
                INSERT INTO notes (id, owner_id, title, body, is_deleted, deleted_at, created_at,
                                   updated_at, sync_status, revision)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title, body = excluded.body,
                    is_deleted = excluded.is_deleted, deleted_at = excluded.deleted_at,
                    created_at = excluded.created_at, updated_at = excluded.updated_at,
                    sync_status = excluded.sync_status, status_before_delete = NULL,
                    revision = notes.revision + 1, rejection_count = 0, last_error = NULL
            ''', (
                note.id, owner_id, note.title, note.body, int(note.is_deleted),
                _ts(note.deleted_at), _ts(note.created_at or now), _ts(note.updated_at or now),
                SyncStatus.SYNCED.value,
            ))
            self._set_links(conn, owner_id, note.id, note.label_ids)
            return True

    # ==================== 游标 ====================

    def get_cursor(self, owner_id: str, scope: str) -> Optional[SyncCursor]:
        with self._transaction("get_cursor") as conn:
            row = conn.execute(
                'SELECT * FROM sync_cursors WHERE owner_id = ? AND scope = ?', (owner_id, scope)
            ).fetchone()
        if row is None:
            return None
        return SyncCursor(
            owner_id=row['owner_id'],
            scope=row['scope'],
            last_synced_at=_dt(row['last_synced_at']),
            last_change_seen=_dt(row['last_change_seen']),
        )

    def advance_cursor(
        self,
        owner_id: str,
        scope: str,
        last_synced_at: datetime,
        last_change_seen: Optional[datetime] = None,
    ) -> bool:
        """
        推进游标（首次同步时创建），游标只会前进

        Returns:
            False 表示新时间早于已保存的时间，未做修改
        """
        with self._transaction("advance_cursor") as conn:
            row = conn.execute(
                'SELECT * FROM sync_cursors WHERE owner_id = ? AND scope = ?', (owner_id, scope)
            ).fetchone()
            if row is None:
                conn.execute(
                    'INSERT INTO sync_cursors (owner_id, scope, last_change_seen, last_synced_at) '
                    'VALUES (?, ?, ?, ?)',
                    (owner_id, scope, _ts(last_change_seen), _ts(last_synced_at))
                )
                return True

            if _ts(last_synced_at) < row['last_synced_at']:
                logger.warning(
                    f"replica_cursor_backwards: owner={owner_id} scope={scope} "
                    f"stored={row['last_synced_at']} new={_ts(last_synced_at)}"
                )
                return False

            seen = row['last_change_seen']
            new_seen = _ts(last_change_seen)
            if new_seen is not None and (seen is None or new_seen > seen):
                seen = new_seen
            conn.execute(
                'UPDATE sync_cursors SET last_synced_at = ?, last_change_seen = ? WHERE owner_id = ? AND scope = ?',
                (_ts(last_synced_at), seen, owner_id, scope)
            )
            return True

    # ==================== 统计 ====================

    def pending_counts(self, owner_id: str, max_rejections: int = 0) -> Dict[str, Dict[str, int]]:
        """
        按实体类型统计待推送数量

        parked 为拒绝次数达到 max_rejections、暂停推送的实体数（max_rejections=0 时恒为 0）。
        """
        result: Dict[str, Dict[str, int]] = {}
        with self._transaction("pending_counts") as conn:
            for table in ('notes', 'labels'):
                counts = {status.value: 0 for status in SyncStatus if status.is_pending}
                for row in conn.execute(
                    f'SELECT sync_status, COUNT(*) AS cnt FROM {table} WHERE owner_id = ? GROUP BY sync_status',
                    (owner_id,)
                ).fetchall():
                    if row['sync_status'] in counts:
                        counts[row['sync_status']] = row['cnt']
                parked = 0
                if max_rejections > 0:
                    parked = conn.execute(
                        f'SELECT COUNT(*) AS cnt FROM {table} WHERE owner_id = ? AND sync_status != ? '
                        f'AND rejection_count >= ?',
                        (owner_id, SyncStatus.SYNCED.value, max_rejections)
                    ).fetchone()['cnt']
                counts['parked'] = parked
                result[table] = counts
        return result
