"""
联网探测

同步引擎通过注入的探测器判断是否联网，不依赖任何全局标志。
本地写入从不查询联网状态。
"""

import logging
import threading
import time
from typing import Callable, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class ConnectivityChecker(Protocol):
    """联网探测接口"""

    def is_online(self) -> bool:
        ...

    def invalidate(self) -> None:
        """丢弃缓存的探测结果"""
        ...


class StaticConnectivity:
    """固定结果的探测器（测试、手动切换离线模式）"""

    def __init__(self, online: bool = True):
        self.online = online

    def is_online(self) -> bool:
        return self.online

    def set_online(self, online: bool) -> None:
        self.online = online

    def invalidate(self) -> None:
        pass


class HttpConnectivityChecker:
    """
    通过 GET /health 探测远端是否可达

    结果缓存 cache_ttl 秒，避免每次写入或调度都发起请求。
    """

    def __init__(
        self,
        health_url: str,
        timeout: float = 3.0,
        cache_ttl: float = 5.0,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.health_url = health_url
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._client = http_client
        self._clock = clock
        self._lock = threading.Lock()
        self._last_checked: Optional[float] = None
        self._last_result = False

    @classmethod
    def from_settings(cls, http_client: Optional[httpx.Client] = None) -> "HttpConnectivityChecker":
        from domains.infra.settings import get_sync_settings

        settings = get_sync_settings()
        health_url = settings.health_url or str(
            httpx.URL(settings.api_base_url).copy_with(path="/health", query=None)
        )
        return cls(
            health_url,
            timeout=min(settings.request_timeout, 3.0),
            cache_ttl=settings.connectivity_cache_ttl,
            http_client=http_client,
        )

    def is_online(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_checked is not None and now - self._last_checked < self.cache_ttl:
                return self._last_result

            result = self._check_health()
            if result != self._last_result:
                logger.info(f"connectivity_changed: online={result} url={self.health_url}")
            self._last_checked = now
            self._last_result = result
            return result

    def invalidate(self) -> None:
        """清除缓存，下一次调用重新探测"""
        with self._lock:
            self._last_checked = None

    def _check_health(self) -> bool:
        try:
            if self._client is not None:
                response = self._client.get(self.health_url)
            else:
                response = httpx.get(self.health_url, timeout=self.timeout)
            return response.status_code == 200
        except httpx.TimeoutException:
            logger.warning(f"connectivity_check_timeout: {self.health_url}")
        except httpx.HTTPError as e:
            logger.debug(f"connectivity_check_failed: {self.health_url} {e}")
        return False
