"""
验证引擎入口（对调用方的契约）

职责：
- 每个阶段一个入口：resolve_challenge / solve_captcha_if_present / recover_if_stuck，均返回 bool 且已完成所需诊断
- run_verification 驱动状态机直到 verified / blocked / failed
- 只有 RecoveryExhausted（可选）与 SessionUnusable 会越过引擎边界
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import get_setting
from .captcha_resolver import CaptchaResolver
from .challenge_resolver import ChallengeResolver
from .debug_capture import DebugCapture
from .errors import RecoveryExhausted
from .fsm_orchestrator import VerificationPhase, is_terminal_phase, next_phase
from .page_state import PageState, classify_page_state
from .recovery import RecoveryCoordinator
from .session import BrowserSession, LogFn, noop_log


@dataclass
class VerificationOutcome:
    phase: VerificationPhase
    page_state: PageState
    phase_results: dict[str, bool] = field(default_factory=dict)
    history: list[str] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.phase == "verified"

    @property
    def informational(self) -> bool:
        """blocked 为提示性结果（如未到续期时间），不是错误。"""
        return self.phase == "blocked"

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "page_state": self.page_state.to_dict(),
            "phase_results": dict(self.phase_results),
            "history": list(self.history),
            "artifacts": list(self.artifacts),
        }


class VerificationEngine:
    """
    组装各解析器；每次续期执行创建一个实例，不跨执行保留状态。
    """

    def __init__(
        self,
        *,
        settings: Optional[dict] = None,
        log_fn: Optional[LogFn] = None,
        challenge_resolver: Optional[ChallengeResolver] = None,
        captcha_resolver: Optional[CaptchaResolver] = None,
        recovery: Optional[RecoveryCoordinator] = None,
        debug_capture: Optional[DebugCapture] = None,
        classify: Optional[Callable[[BrowserSession], PageState]] = None,
        post_challenge_settle_ms: int = 3000,
    ) -> None:
        self._settings = settings
        self._log = log_fn or noop_log
        self.debug_capture = debug_capture or DebugCapture(
            get_setting("debug.output_dir", settings=settings), log_fn=self._log
        )
        self.challenge_resolver = challenge_resolver or ChallengeResolver(
            settings=settings, log_fn=self._log, debug_capture=self.debug_capture
        )
        self.captcha_resolver = captcha_resolver or CaptchaResolver(
            settings=settings, log_fn=self._log, debug_capture=self.debug_capture
        )
        self._classify = classify or (
            lambda s: classify_page_state(s, settings=settings, log_fn=self._log)
        )
        self.recovery = recovery or RecoveryCoordinator(
            settings=settings, log_fn=self._log, classify=self._classify
        )
        self.post_challenge_settle_ms = post_challenge_settle_ms

    def classify(self, session: BrowserSession) -> PageState:
        return self._classify(session)

    def resolve_challenge(self, session: BrowserSession) -> bool:
        attempts = int(get_setting("challenge.max_attempts", 5, settings=self._settings))
        ok = self.challenge_resolver.resolve(session, attempts)
        if ok:
            self._log("Turnstile 处理完成，等待验证结果...", "info")
            session.pause(self.post_challenge_settle_ms)
        else:
            self._log("⚠️ Turnstile 验证处理失败，但继续执行后续流程", "warn")
        return ok

    def solve_captcha_if_present(self, session: BrowserSession) -> bool:
        tries = int(get_setting("captcha.max_tries", 3, settings=self._settings))
        return self.captcha_resolver.solve(session, tries)

    def recover_if_stuck(self, session: BrowserSession) -> bool:
        self._log("开始智能恢复机制...", "info")
        recovered = self.recovery.recover(session)
        if not recovered:
            self.debug_capture.capture_state(session, "verification_failed")
        return recovered

    def run(
        self, session: BrowserSession, *, raise_on_failure: bool = False
    ) -> VerificationOutcome:
        handlers: dict[str, Callable[[BrowserSession], bool]] = {
            "challenge_phase": self.resolve_challenge,
            "captcha_phase": self.solve_captcha_if_present,
            "recovery_phase": self.recover_if_stuck,
        }
        state = PageState.indeterminate()
        phase: VerificationPhase = next_phase("start", step_ok=True, page_state=state)
        outcome = VerificationOutcome(phase=phase, page_state=state)

        while not is_terminal_phase(phase):
            outcome.history.append(phase)
            step_ok = handlers[phase](session)
            outcome.phase_results[phase] = step_ok
            state = self.classify(session)
            self._log(f"   [{phase}] 结果={step_ok} 页面状态={state.kind} {state.detail}".rstrip(), "info")
            phase = next_phase(phase, step_ok=step_ok, page_state=state)

        outcome.phase = phase
        outcome.page_state = state
        outcome.artifacts = list(self.debug_capture.artifacts)
        if phase == "blocked":
            self._log(f"🗓️ 页面提示: {state.detail}", "info")
        elif phase == "failed":
            self._log("❌ 验证码识别失败：尝试多次未成功，智能恢复也失败", "error")
            if raise_on_failure:
                raise RecoveryExhausted(
                    "验证码识别失败：尝试多次未成功，智能恢复也失败",
                    artifacts=outcome.artifacts,
                )
        return outcome


def resolve_challenge(
    session: BrowserSession, settings: Optional[dict] = None, log_fn: Optional[LogFn] = None
) -> bool:
    return VerificationEngine(settings=settings, log_fn=log_fn).resolve_challenge(session)


def solve_captcha_if_present(
    session: BrowserSession, settings: Optional[dict] = None, log_fn: Optional[LogFn] = None
) -> bool:
    return VerificationEngine(settings=settings, log_fn=log_fn).solve_captcha_if_present(session)


def recover_if_stuck(
    session: BrowserSession, settings: Optional[dict] = None, log_fn: Optional[LogFn] = None
) -> bool:
    return VerificationEngine(settings=settings, log_fn=log_fn).recover_if_stuck(session)


def run_verification(
    session: BrowserSession,
    settings: Optional[dict] = None,
    *,
    log_fn: Optional[LogFn] = None,
    raise_on_failure: bool = False,
) -> VerificationOutcome:
    engine = VerificationEngine(settings=settings, log_fn=log_fn or noop_log)
    return engine.run(session, raise_on_failure=raise_on_failure)
