"""
远端 API 客户端（httpx）

把 REST 调用映射为同步引擎使用的错误分类：
- 超时 / 连接失败 / 5xx / 408 / 429 -> TransientNetworkError（下一轮重试）
- 401 -> AuthFailureError（按网络错误处理）
- 其余 4xx -> RemoteRejectionError（本轮不重试）
- 删除时 404 视为成功（目标已不存在）

响应体为 ApiResponse 信封 {success, data, error, message, timestamp}。
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from domains.core.exceptions import AuthFailureError, RemoteRejectionError, TransientNetworkError

from ..core.models import DEFAULT_LABEL_COLOR, RemoteCursor, RemoteLabel, RemoteNote

logger = logging.getLogger(__name__)

SERVICE_NAME = "notes-api"

_RETRYABLE_STATUS = {408, 429}


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _to_note(data: Dict[str, Any]) -> RemoteNote:
    label_ids = data.get('label_ids')
    if label_ids is None:
        label_ids = [label['id'] for label in data.get('labels') or []]
    return RemoteNote(
        id=data['id'],
        title=data.get('title'),
        body=data.get('body'),
        is_deleted=bool(data.get('is_deleted', False)),
        deleted_at=_parse_dt(data.get('deleted_at')),
        created_at=_parse_dt(data.get('created_at')),
        updated_at=_parse_dt(data.get('updated_at')),
        label_ids=list(label_ids),
    )


def _to_label(data: Dict[str, Any]) -> RemoteLabel:
    return RemoteLabel(
        id=data['id'],
        name=data['name'],
        color=data.get('color') or DEFAULT_LABEL_COLOR,
        created_at=_parse_dt(data.get('created_at')),
    )


class RemoteNotesClient:
    """
    远端笔记 API 客户端

    Args:
        base_url: API 前缀地址，如 http://host:8000/api/v1
        credentials: 返回当前 bearer token 的回调（凭证由外部身份组件管理）
        timeout: 单次调用超时（秒）
        http_client: 可注入的 httpx.Client（测试时传入 TestClient）
    """

    def __init__(
        self,
        base_url: str,
        credentials: Callable[[], Optional[str]],
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_settings(
        cls,
        credentials: Callable[[], Optional[str]],
        http_client: Optional[httpx.Client] = None,
    ) -> "RemoteNotesClient":
        from domains.infra.settings import get_sync_settings

        settings = get_sync_settings()
        return cls(settings.api_base_url, credentials, settings.request_timeout, http_client)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ==================== 传输 ====================

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
        allow_missing: bool = False,
    ) -> Any:
        headers = {}
        token = self._credentials()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        params = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(SERVICE_NAME, f"{method} {path} 超时", cause=e) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(SERVICE_NAME, f"{method} {path} 连接失败: {e}", cause=e) from e

        status = response.status_code
        if status == 404 and allow_missing:
            logger.debug(f"remote_missing_ok: {method} {path}")
            return None
        if status == 401:
            raise AuthFailureError(SERVICE_NAME)
        if status >= 500 or status in _RETRYABLE_STATUS:
            raise TransientNetworkError(
                SERVICE_NAME,
                f"{method} {path} 返回 HTTP {status}",
                details={"status_code": status},
            )
        if status >= 400:
            raise RemoteRejectionError(
                self._error_message(response),
                status_code=status,
                entity_id=entity_id,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientNetworkError(SERVICE_NAME, f"{method} {path} 响应不是 JSON", cause=e) from e
        if isinstance(payload, dict) and 'success' in payload:
            return payload.get('data')
        return payload

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(payload, dict):
            return str(payload.get('error') or payload.get('detail') or payload.get('message') or payload)
        return str(payload)

    # ==================== 变更流 ====================

    def get_cursor(self, label_id: Optional[str] = None) -> RemoteCursor:
        data = self._request("GET", "/sync/cursor", params={"label_id": label_id})
        return RemoteCursor(
            server_time=_parse_dt(data['server_time']),
            last_change_at=_parse_dt(data.get('last_change_at')),
        )

    def changes_since(self, since: datetime, label_id: Optional[str] = None) -> List[RemoteNote]:
        data = self._request(
            "GET", "/sync/changes", params={"since": since.isoformat(), "label_id": label_id}
        )
        return [_to_note(item) for item in data or []]

    def full_snapshot(self, label_id: Optional[str] = None) -> List[RemoteNote]:
        data = self._request("GET", "/sync/snapshot", params={"label_id": label_id})
        return [_to_note(item) for item in data or []]

    # ==================== 笔记 ====================

    def create_note(
        self,
        note_id: str,
        title: Optional[str],
        body: Optional[str],
        label_ids: List[str],
    ) -> RemoteNote:
        """按客户端 ID 创建，重放返回已有笔记"""
        data = self._request(
            "POST", "/notes",
            json={"id": note_id, "title": title, "body": body, "label_ids": list(label_ids)},
            entity_id=note_id,
        )
        return _to_note(data)

    def update_note(
        self,
        note_id: str,
        title: Optional[str],
        body: Optional[str],
        label_ids: List[str],
        is_deleted: bool = False,
    ) -> RemoteNote:
        data = self._request(
            "PATCH", f"/notes/{note_id}",
            json={
                "title": title,
                "body": body,
                "label_ids": list(label_ids),
                "is_deleted": is_deleted,
            },
            entity_id=note_id,
        )
        return _to_note(data)

    def delete_note(self, note_id: str) -> Optional[RemoteNote]:
        """软删除；远端不存在时视为成功并返回 None"""
        data = self._request("DELETE", f"/notes/{note_id}", entity_id=note_id, allow_missing=True)
        return _to_note(data) if data else None

    # ==================== 标签 ====================

    def list_labels(self) -> List[RemoteLabel]:
        data = self._request("GET", "/labels")
        return [_to_label(item) for item in data or []]

    def create_label(self, label_id: str, name: str, color: str) -> RemoteLabel:
        data = self._request(
            "POST", "/labels",
            json={"id": label_id, "name": name, "color": color},
            entity_id=label_id,
        )
        return _to_label(data)

    def update_label(self, label_id: str, name: str, color: str) -> RemoteLabel:
        data = self._request(
            "PATCH", f"/labels/{label_id}",
            json={"name": name, "color": color},
            entity_id=label_id,
        )
        return _to_label(data)

    def delete_label(self, label_id: str) -> None:
        self._request("DELETE", f"/labels/{label_id}", entity_id=label_id, allow_missing=True)
