"""
恢复级联模块

职责：
- 仅在图片验证码次数耗尽后调用
- 依次：重新分类 -> 通用继续/提交 -> 刷新 -> 推测 URL 改写；每步之后重新分类，首个成功即停止
- 每一步都是尽力而为：步骤内异常只算该步失败，不中断级联
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from ..config import get_setting
from .errors import SessionUnusable
from .page_state import PageState, classify_page_state
from .session import BrowserSession, LogFn, noop_log
from .strategy import AttemptLog

RECOVERY_STEP_NAMES: tuple[str, ...] = (
    "reclassify",
    "skip_and_submit",
    "reload",
    "url_rewrite",
)

_GENERIC_CONTINUE_JS = """
(keyword) => {
  const candidates = document.querySelectorAll("button, input[type='submit'], input[type='button'], a");
  for (const el of candidates) {
    const text = String(el.textContent || "");
    const value = String(el.value || "");
    if (text.includes(keyword) || value.includes(keyword)) {
      el.click();
      return true;
    }
  }
  for (const form of document.querySelectorAll("form")) {
    const submitBtn = form.querySelector("button, input[type='submit']");
    if (submitBtn) {
      submitBtn.click();
      return true;
    }
  }
  return false;
}
"""


def speculative_next_urls(current_url: str) -> list[str]:
    """当前地址的推测改写；去重且不包含当前地址本身。"""
    candidates = [
        re.sub(r"step=\d+", "step=2", current_url),
        re.sub(r"/verify/.*", "/renew", current_url),
        current_url + ("&" if "?" in current_url else "?") + "skip_verification=1",
    ]
    out: list[str] = []
    for url in candidates:
        if url != current_url and url not in out:
            out.append(url)
    return out


def _advanced(state: PageState) -> bool:
    # 未能读取的页面不算前进
    if state.is_unreadable:
        return False
    return state.is_complete or not state.needs_captcha


class RecoveryCoordinator:
    def __init__(
        self,
        *,
        settings: Optional[dict] = None,
        log_fn: Optional[LogFn] = None,
        classify: Optional[Callable[[BrowserSession], PageState]] = None,
        settle_ms: int = 3000,
    ) -> None:
        self._settings = settings
        self._log = log_fn or noop_log
        self._classify = classify or (
            lambda s: classify_page_state(s, settings=settings, log_fn=self._log)
        )
        self.settle_ms = settle_ms
        self.reload_timeout_ms = int(
            get_setting("recovery.reload_timeout_ms", 15000, settings=settings)
        )
        self.navigation_timeout_ms = int(
            get_setting("recovery.navigation_timeout_ms", 10000, settings=settings)
        )

    def _step_reclassify(self, session: BrowserSession) -> bool:
        state = self._classify(session)
        self._log(f"   恢复时页面状态: {state.kind} {state.detail}".rstrip(), "info")
        return state.is_complete

    def _step_skip_and_submit(self, session: BrowserSession) -> bool:
        clicked = bool(session.evaluate(_GENERIC_CONTINUE_JS, "継続"))
        if not clicked:
            return False
        session.pause(self.settle_ms)
        return _advanced(self._classify(session))

    def _step_reload(self, session: BrowserSession) -> bool:
        session.reload(wait_until="networkidle", timeout=self.reload_timeout_ms)
        session.pause(2000)
        return _advanced(self._classify(session))

    def _step_url_rewrite(self, session: BrowserSession) -> bool:
        for next_url in speculative_next_urls(session.url):
            try:
                session.navigate(
                    next_url, wait_until="networkidle", timeout=self.navigation_timeout_ms
                )
            except SessionUnusable:
                raise
            except Exception as exc:
                self._log(f"   ⚠️ 导航到 {next_url} 失败: {exc}", "warn")
                continue
            if self._classify(session).is_complete:
                self._log(f"   导航到 {next_url} 后页面已完成", "info")
                return True
        return False

    def recover(self, session: BrowserSession) -> bool:
        """按级联顺序尝试恢复；全部失败返回 False（终态）。"""
        self._log("执行智能恢复策略...", "info")
        attempt_log = AttemptLog()
        steps = {
            "reclassify": self._step_reclassify,
            "skip_and_submit": self._step_skip_and_submit,
            "reload": self._step_reload,
            "url_rewrite": self._step_url_rewrite,
        }
        for idx, name in enumerate(RECOVERY_STEP_NAMES, start=1):
            self._log(f"恢复策略{idx}: {name}", "info")
            try:
                ok = steps[name](session)
            except SessionUnusable:
                raise
            except Exception as exc:
                attempt_log.append(name, idx, "error", str(exc))
                self._log(f"   ⚠️ 恢复策略{idx}失败: {exc}", "warn")
                continue
            if ok:
                attempt_log.append(name, idx, "success")
                self._log(f"✓ 恢复策略{idx}成功: {name}", "info")
                return True
            attempt_log.append(name, idx, "fail")

        self._log(f"❌ 所有智能恢复策略均失败: {attempt_log.names()}", "error")
        return False
