"""
同步调度器

一个后台工作线程负责周期同步和手动触发：
- 周期触发只在联网时执行
- 连续失败 n 次后，下一次等待 period + min(n * step, max_backoff)
- 同一时刻最多一轮同步在运行，重叠的触发被合并
- 没有登录用户（owner_id 为空）时什么也不做
- stop() 设置取消标志（在下一个阶段边界生效）并等待线程退出
"""

import threading
from typing import Optional

from domains.core.exceptions import LocalStorageError, SyncInProgressError
from domains.infra.logging import get_logger

from ..core.models import GLOBAL_SCOPE, SyncOutcome, SyncReport, SyncScope
from .connectivity import ConnectivityChecker
from .orchestrator import SyncOrchestrator

logger = get_logger(__name__)


class SyncScheduler:
    """同步调度器"""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        connectivity: ConnectivityChecker,
        owner_id: Optional[str] = None,
        period_seconds: float = 900.0,
        backoff_step_seconds: float = 300.0,
        max_backoff_seconds: float = 3600.0,
        scope: SyncScope = GLOBAL_SCOPE,
    ):
        self.orchestrator = orchestrator
        self.connectivity = connectivity
        self.owner_id = owner_id
        self.period_seconds = period_seconds
        self.backoff_step_seconds = backoff_step_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.scope = scope

        self.consecutive_failures = 0
        self.last_report: Optional[SyncReport] = None

        self._in_flight = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(
        cls,
        orchestrator: SyncOrchestrator,
        connectivity: ConnectivityChecker,
        owner_id: Optional[str] = None,
        scope: SyncScope = GLOBAL_SCOPE,
    ) -> "SyncScheduler":
        from domains.infra.settings import get_sync_settings

        settings = get_sync_settings()
        return cls(
            orchestrator,
            connectivity,
            owner_id=owner_id,
            period_seconds=settings.period_seconds,
            backoff_step_seconds=settings.backoff_step_seconds,
            max_backoff_seconds=settings.max_backoff_seconds,
            scope=scope,
        )

    # ==================== 生命周期 ====================

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._cancel.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self._loop, name="notes-sync-scheduler", daemon=True)
        self._thread.start()
        logger.info("sync_scheduler_started", period_seconds=self.period_seconds, scope=self.scope.key)

    def stop(self, timeout: Optional[float] = None) -> None:
        """停止调度；正在运行的同步在下一个阶段边界退出"""
        self._cancel.set()
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("sync_scheduler_stopped")

    # ==================== 触发 ====================

    def request_sync(self) -> None:
        """手动触发，由工作线程尽快执行"""
        self._wake.set()

    def run_now(self) -> Optional[SyncReport]:
        """
        在调用线程上立即同步一轮

        Returns:
            同步报告；已有同步在运行（被合并）或未登录时返回 None

        Raises:
            LocalStorageError: 本地副本读写失败
        """
        return self._execute("manual")

    def next_delay(self) -> float:
        """下一次周期触发前的等待时间"""
        backoff = min(self.consecutive_failures * self.backoff_step_seconds, self.max_backoff_seconds)
        return self.period_seconds + backoff

    # ==================== 内部 ====================

    def _loop(self) -> None:
        while not self._stop.is_set():
            manual = self._wake.wait(timeout=self.next_delay())
            if self._stop.is_set():
                break
            self._wake.clear()

            if not manual and not self.connectivity.is_online():
                logger.debug("sync_periodic_skipped_offline")
                continue

            try:
                self._execute("manual" if manual else "periodic")
            except Exception as e:
                logger.error("sync_scheduler_run_error", error=str(e), error_type=type(e).__name__)

    def _execute(self, trigger: str) -> Optional[SyncReport]:
        owner_id = self.owner_id
        if not owner_id:
            logger.debug("sync_skipped_no_session", trigger=trigger)
            return None

        if not self._in_flight.acquire(blocking=False):
            logger.info("sync_trigger_coalesced", trigger=trigger, owner_id=owner_id)
            return None
        try:
            report = self.orchestrator.run_sync(owner_id, self.scope, cancel_event=self._cancel)
        except SyncInProgressError:
            logger.info("sync_trigger_coalesced", trigger=trigger, owner_id=owner_id)
            return None
        except LocalStorageError:
            self._record(False)
            raise
        finally:
            self._in_flight.release()

        self._record(report.outcome is not SyncOutcome.FAILURE)
        self.last_report = report
        return report

    def _record(self, succeeded: bool) -> None:
        if succeeded:
            self.consecutive_failures = 0
            return
        self.consecutive_failures += 1
        logger.warning(
            "sync_scheduler_backoff",
            consecutive_failures=self.consecutive_failures,
            next_delay_seconds=self.next_delay(),
        )
