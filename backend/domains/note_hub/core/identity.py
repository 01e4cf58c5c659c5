"""
身份校验

凭证签发与会话管理不在本系统内，这里只定义校验接口：
给定一个不透明的 bearer token，返回所有者 ID 或 None。
"""

import hmac
import logging
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """身份校验接口"""

    def authenticate(self, token: str) -> Optional[str]:
        """校验 token，成功返回所有者 ID"""
        ...


class StaticTokenIdentityProvider:
    """基于静态 token 表的身份校验（token -> owner_id）"""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self._tokens = dict(tokens or {})

    @classmethod
    def from_settings(cls) -> "StaticTokenIdentityProvider":
        from domains.infra.settings import get_server_settings

        tokens = get_server_settings().api_tokens
        if not tokens:
            logger.warning("未配置任何 API token，所有请求都将被拒绝")
        return cls(tokens)

    def authenticate(self, token: str) -> Optional[str]:
        if not token:
            return None
        for known, owner_id in self._tokens.items():
            if hmac.compare_digest(known, token):
                return owner_id
        return None
