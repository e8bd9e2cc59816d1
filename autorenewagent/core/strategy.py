"""
有序策略执行原语

职责：
- Strategy：命名的 attempt() + 独立 verify() 组合，按声明顺序尝试，首个验证成功即短路
- AttemptLog：只追加的尝试记录，用于诊断与“全部策略耗尽”判定
- 退避策略：按尝试序号计算等待秒数，可注入便于测试
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal, Optional, Sequence

from .errors import SessionUnusable
from .session import LogFn, noop_log

AttemptOutcome = Literal["success", "fail", "error"]
BackoffFn = Callable[[int], float]
SleepFn = Callable[[float], None]


def linear_backoff(attempt_index: int, *, unit_seconds: float = 1.0) -> float:
    """第 k 次尝试前等待约 k 个时间单位。"""
    return max(0, attempt_index) * unit_seconds


def no_backoff(_attempt_index: int) -> float:
    return 0.0


@dataclass(frozen=True)
class AttemptRecord:
    strategy_name: str
    attempt_index: int
    outcome: AttemptOutcome
    timestamp_offset: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy_name,
            "attempt": self.attempt_index,
            "outcome": self.outcome,
            "t": round(self.timestamp_offset, 3),
            "error": self.error,
        }


class AttemptLog:
    """只追加的 AttemptRecord 序列，作用域限于单次解析调用。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started = clock()
        self._records: list[AttemptRecord] = []

    def append(
        self,
        strategy_name: str,
        attempt_index: int,
        outcome: AttemptOutcome,
        error: Optional[str] = None,
    ) -> AttemptRecord:
        record = AttemptRecord(
            strategy_name=strategy_name,
            attempt_index=attempt_index,
            outcome=outcome,
            timestamp_offset=self._clock() - self._started,
            error=error,
        )
        self._records.append(record)
        return record

    @property
    def records(self) -> tuple[AttemptRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def succeeded(self) -> bool:
        return any(r.outcome == "success" for r in self._records)

    def names(self) -> list[str]:
        return [r.strategy_name for r in self._records]

    def to_list(self) -> list[dict]:
        return [r.to_dict() for r in self._records]


@dataclass(frozen=True)
class Strategy:
    name: str
    attempt: Callable[[], Any]
    verify: Callable[[], bool]


def run_strategies(
    strategies: Sequence[Strategy] | Iterable[Strategy],
    *,
    attempt_log: AttemptLog,
    attempt_index: int = 0,
    log_fn: Optional[LogFn] = None,
) -> Optional[str]:
    """
    按声明顺序执行策略；返回首个 verify() 成功的策略名，全部失败返回 None。

    attempt() 抛出的普通异常记为 error 并继续下一个策略；
    SessionUnusable 直接上抛。verify() 抛异常视为未通过。
    """
    log = log_fn or noop_log
    for strategy in tuple(strategies):
        try:
            strategy.attempt()
        except SessionUnusable:
            raise
        except Exception as exc:
            attempt_log.append(strategy.name, attempt_index, "error", str(exc))
            log(f"   ⚠️ 策略 {strategy.name} 执行失败: {exc}", "warn")
            continue

        try:
            verified = bool(strategy.verify())
        except SessionUnusable:
            raise
        except Exception as exc:
            attempt_log.append(strategy.name, attempt_index, "error", str(exc))
            log(f"   ⚠️ 策略 {strategy.name} 校验出错: {exc}", "warn")
            continue

        if verified:
            attempt_log.append(strategy.name, attempt_index, "success")
            log(f"   ✓ 策略 {strategy.name} 成功", "info")
            return strategy.name
        attempt_log.append(strategy.name, attempt_index, "fail")
    return None
