"""
单线程续期调度器。

职责：
- 从 renewal_runs 表中按创建顺序取出 pending 执行
- 将其标记为 in_progress 并调用续期执行模块
- 根据结果更新为 renewed / not_due / unchanged / failed
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event, Thread
from typing import Optional

from ..db.database import get_session
from ..models.renewal_run import RenewalRun, RunStatus
from .renewer import RenewResult, renew_vps


@dataclass
class SchedulerConfig:
    """
    调度器配置。
    """

    poll_interval_seconds: float = 2.0


class RenewalScheduler:
    """
    极简单线程调度器：同一时刻只运行一次续期（同一账号不并发）。
    """

    def __init__(self, config: Optional[SchedulerConfig] = None) -> None:
        self.config = config or SchedulerConfig()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        self._running = True

    def stop(self) -> None:
        self._stop_event.set()
        self._running = False

    def run_once(self) -> Optional[RenewResult]:
        """同步处理一条 pending 执行；没有待处理项时返回 None。"""
        run = self._fetch_next_pending_run()
        if not run:
            return None
        return self._process_run(run)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            run = self._fetch_next_pending_run()
            if not run:
                time.sleep(self.config.poll_interval_seconds)
                continue

            self._process_run(run)

    def _fetch_next_pending_run(self) -> Optional[RenewalRun]:
        with get_session() as session:
            run = (
                session.query(RenewalRun)
                .filter(RenewalRun.status == RunStatus.PENDING)
                .order_by(RenewalRun.create_time.asc())
                .first()
            )
            if run:
                run.status = RunStatus.IN_PROGRESS
                session.add(run)
            return run

    def _process_run(self, run: RenewalRun) -> RenewResult:
        """
        调用续期执行模块处理一次执行，并回写结果。
        """
        result = renew_vps(run.id)

        with get_session() as session:
            db_run = session.get(RenewalRun, run.id)
            if not db_run:
                return result
            db_run.status = result.status
            db_run.phase = result.phase
            db_run.expiry_before = result.expiry_before
            db_run.expiry_after = result.expiry_after
            db_run.next_renew_date = result.next_renew_date
            db_run.info_message = result.info_message
            db_run.error_message = result.error_message
            db_run.debug_artifacts = "\n".join(result.artifacts) or None
            db_run.finish_time = datetime.now(timezone.utc)
            session.add(db_run)
            print(f"[run={run.id}] 状态更新为: {result.status.value.upper()}")
        return result


# 全局单例调度器
scheduler = RenewalScheduler()
