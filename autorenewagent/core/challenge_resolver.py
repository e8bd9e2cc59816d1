"""
Turnstile 交互验证处理模块

职责：
- 按固定顺序尝试：直接调用回调 -> 主文档元素点击 -> 跨 frame 元素点击
- 每次外层尝试前线性退避，并重新获取 frame 集合（ChallengeContext）
- 成功检测是启发式的：没有成功标记只代表“未知”，最终由页面分类与恢复流程裁决
- 找不到可交互元素不是错误；只有尝试耗尽且无成功信号才返回 False，从不抛出普通异常
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import get_setting
from .debug_capture import DebugCapture
from .errors import SessionUnusable
from .session import CLICK_MODALITIES, BrowserSession, FrameInfo, LogFn, noop_log
from .strategy import AttemptLog, BackoffFn, Strategy, linear_backoff, run_strategies

MAIN_DOCUMENT_SELECTORS: tuple[str, ...] = (
    '[data-sitekey*="0x4AAAAAABlb1fIlWBrSDU3B"]',
    '[data-sitekey^="0x4"]',
    '[data-callback="callbackTurnstile"]',
    ".cf-turnstile",
    ".cloudflare-turnstile",
)

FRAME_SELECTORS: tuple[str, ...] = (
    'input[type="checkbox"]',
    ".ctp-checkbox-label",
    ".cf-turnstile-wrapper",
    ".cb-lb",
    ".ctp-checkbox",
    '[role="checkbox"]',
    "button",
    ".checkbox",
    ".challenge-checkbox",
    'div[tabindex="0"]',
    'span[tabindex="0"]',
    '[aria-label*="checkbox"]',
    '[aria-label*="验证"]',
    '[aria-label*="verify"]',
)

CHALLENGE_FRAME_PATTERNS: tuple[str, ...] = (
    "challenges.cloudflare.com",
    "turnstile",
    "cf-chl-widget",
    "cloudflare.com",
)
# 成功检测只扫描这两类 frame
SUCCESS_FRAME_PATTERNS: tuple[str, ...] = ("challenges.cloudflare.com", "turnstile")

LEGACY_CAPTCHA_IMAGE_SELECTOR = 'img[src^="data:"]'

_DIRECT_CALLBACK_JS = """
() => {
  if (typeof window.callbackTurnstile === "function") {
    window.callbackTurnstile("success");
    return { success: true, method: "callbackTurnstile" };
  }
  const els = document.querySelectorAll('[data-callback="callbackTurnstile"]');
  if (els.length > 0) {
    return { success: true, method: "data-callback", count: els.length };
  }
  return { success: false, reason: "No Turnstile callback found" };
}
"""

_MAIN_SUCCESS_JS = """
(minTokenLength) => {
  const markers = [".cf-turnstile-success", "[data-cf-turnstile-success]", ".turnstile-success"];
  for (const sel of markers) {
    if (document.querySelector(sel)) return true;
  }
  const inputs = document.querySelectorAll('input[name*="turnstile"], input[name*="cf-turnstile"]');
  for (const input of inputs) {
    if (input.value && input.value.length > minTokenLength) return true;
  }
  return false;
}
"""

_FRAME_SUCCESS_JS = """
() => document.querySelectorAll('[aria-checked="true"], .success, .completed').length > 0
"""


def url_matches(url: str, patterns: tuple[str, ...]) -> bool:
    return any(p in (url or "") for p in patterns)


@dataclass(frozen=True)
class ChallengeContext:
    """某次尝试开始时的 frame 集合快照；每次尝试重新获取。"""

    main_url: str
    frames: tuple[FrameInfo, ...]

    @classmethod
    def acquire(cls, session: BrowserSession) -> "ChallengeContext":
        try:
            frames = tuple(session.frames())
        except SessionUnusable:
            raise
        except Exception:
            frames = ()
        return cls(main_url=session.url, frames=frames)

    @property
    def challenge_frames(self) -> tuple[FrameInfo, ...]:
        return tuple(
            f for f in self.frames if url_matches(f.url, CHALLENGE_FRAME_PATTERNS)
        )


@dataclass(frozen=True)
class ChallengeResolution:
    ok: bool
    method: str
    attempts_used: int
    records: tuple

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "method": self.method,
            "attempts_used": self.attempts_used,
            "records": [r.to_dict() for r in self.records],
        }


class ChallengeResolver:
    def __init__(
        self,
        *,
        settings: Optional[dict] = None,
        log_fn: Optional[LogFn] = None,
        backoff: BackoffFn = linear_backoff,
        debug_capture: Optional[DebugCapture] = None,
    ) -> None:
        self._settings = settings
        self._log = log_fn or noop_log
        self.backoff = backoff
        self.debug_capture = debug_capture or DebugCapture(
            get_setting("debug.output_dir", settings=settings), log_fn=self._log
        )
        self.click_settle_ms = int(get_setting("challenge.click_settle_ms", 3000, settings=settings))
        self.frame_settle_ms = int(get_setting("challenge.frame_settle_ms", 2000, settings=settings))
        self.frame_selector_timeout_ms = int(
            get_setting("challenge.frame_selector_timeout_ms", 3000, settings=settings)
        )
        self.optimistic_after_attempt = int(
            get_setting("challenge.optimistic_after_attempt", 3, settings=settings)
        )
        self.min_token_length = 10

    # ---- 成功检测 ----

    def detect_success(self, session: BrowserSession) -> bool:
        try:
            if session.evaluate(_MAIN_SUCCESS_JS, self.min_token_length):
                self._log("   检测到 Turnstile 验证成功标识", "info")
                return True
            for frame in session.frames():
                if not url_matches(frame.url, SUCCESS_FRAME_PATTERNS):
                    continue
                try:
                    if session.evaluate(_FRAME_SUCCESS_JS, scope=frame.index):
                        self._log("   在 Turnstile iframe 中检测到成功状态", "info")
                        return True
                except SessionUnusable:
                    raise
                except Exception:
                    # cross-origin frame 可能已销毁
                    continue
        except SessionUnusable:
            raise
        except Exception as exc:
            self._log(f"   ⚠️ 检测 Turnstile 成功状态时出错: {exc}", "warn")
        return False

    # ---- 战术 ----

    def try_direct_callback(self, session: BrowserSession) -> bool:
        try:
            result = session.evaluate(_DIRECT_CALLBACK_JS) or {}
        except SessionUnusable:
            raise
        except Exception as exc:
            self._log(f"   ⚠️ 直接调用 Turnstile 回调失败: {exc}", "warn")
            return False
        self._log(f"   直接回调尝试结果: {result}", "info")
        return bool(result.get("success")) if isinstance(result, dict) else False

    def _click_strategies(
        self, session: BrowserSession, selector: str, scope: Optional[int]
    ) -> tuple[Strategy, ...]:
        def make_click(modality):
            def attempt() -> None:
                session.click(selector, modality=modality, scope=scope)
                session.pause(self.click_settle_ms)

            return attempt

        where = "main" if scope is None else f"frame{scope}"
        return tuple(
            Strategy(
                name=f"{where}:{selector}:{modality}",
                attempt=make_click(modality),
                verify=lambda: self.detect_success(session),
            )
            for modality in CLICK_MODALITIES
        )

    def _interact_main_document(
        self, session: BrowserSession, attempt_index: int, attempt_log: AttemptLog
    ) -> Optional[str]:
        for selector in MAIN_DOCUMENT_SELECTORS:
            if not session.query_selector(selector).found:
                continue
            self._log(f"   在主页面找到 Turnstile 元素: {selector}", "info")
            winner = run_strategies(
                self._click_strategies(session, selector, None),
                attempt_log=attempt_log,
                attempt_index=attempt_index,
                log_fn=self._log,
            )
            if winner:
                return winner
        return None

    def _interact_frames(
        self,
        session: BrowserSession,
        context: ChallengeContext,
        attempt_index: int,
        attempt_log: AttemptLog,
    ) -> Optional[str]:
        frames = context.challenge_frames
        if not frames:
            self._log("   未找到 Turnstile iframe", "info")
            return None
        self._log(f"   找到 {len(frames)} 个 Turnstile iframe", "info")
        for frame in frames:
            self._log(f"   处理 iframe: {frame.url}", "info")
            session.pause(self.frame_settle_ms)
            for selector in FRAME_SELECTORS:
                if not session.wait_for_selector(
                    selector, timeout=self.frame_selector_timeout_ms, scope=frame.index
                ):
                    continue
                winner = run_strategies(
                    self._click_strategies(session, selector, frame.index),
                    attempt_log=attempt_log,
                    attempt_index=attempt_index,
                    log_fn=self._log,
                )
                if winner:
                    return winner
                # 同一 frame 内找到过元素就不再换选择器
                break
        return None

    def _legacy_captcha_present(self, session: BrowserSession) -> bool:
        return session.query_selector(LEGACY_CAPTCHA_IMAGE_SELECTOR).found

    # ---- 入口 ----

    def resolve_detailed(
        self, session: BrowserSession, max_attempts: Optional[int] = None
    ) -> ChallengeResolution:
        attempts = int(
            max_attempts
            if max_attempts is not None
            else get_setting("challenge.max_attempts", 5, settings=self._settings)
        )
        attempt_log = AttemptLog()
        self._log("开始处理 Turnstile 验证...", "info")

        self._log("策略1: 尝试直接调用 JavaScript 回调函数", "info")
        found: dict[str, bool] = {}

        def invoke_callback() -> None:
            found["callback"] = self.try_direct_callback(session)
            if found["callback"]:
                session.pause(2000)

        direct = Strategy(
            name="direct_callback",
            attempt=invoke_callback,
            verify=lambda: found.get("callback", False) and self.detect_success(session),
        )
        if run_strategies((direct,), attempt_log=attempt_log, log_fn=self._log):
            return ChallengeResolution(True, "direct_callback", 0, attempt_log.records)

        self._log("策略2: 主页面与 iframe 元素交互", "info")
        for attempt in range(1, attempts + 1):
            self._log(f"Turnstile 处理尝试 {attempt}/{attempts}", "info")
            delay = max(0.0, float(self.backoff(attempt)))
            if delay:
                session.pause(int(delay * 1000))

            context = ChallengeContext.acquire(session)
            winner = self._interact_main_document(session, attempt, attempt_log)
            if not winner:
                winner = self._interact_frames(session, context, attempt, attempt_log)
            if winner:
                self._log(f"✓ Turnstile 验证成功 ({winner})", "info")
                return ChallengeResolution(True, winner, attempt, attempt_log.records)

            if attempt == attempts:
                self._log("保存最终调试信息...", "info")
                self.debug_capture.capture_frames(session)

            if attempt >= self.optimistic_after_attempt and not self._legacy_captcha_present(session):
                self._log("未找到其他验证码，可能不需要 Turnstile 验证", "info")
                attempt_log.append("optimistic_pass", attempt, "success")
                return ChallengeResolution(True, "optimistic_pass", attempt, attempt_log.records)

        self._log(f"⚠️ Turnstile 验证处理失败，已尝试 {attempts} 次", "warn")
        return ChallengeResolution(False, "exhausted", attempts, attempt_log.records)

    def resolve(self, session: BrowserSession, max_attempts: Optional[int] = None) -> bool:
        """True 表示认为已通过或本来就不需要验证；从不因普通失败抛异常。"""
        return self.resolve_detailed(session, max_attempts).ok
