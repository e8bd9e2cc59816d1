"""
表单动作执行模块

职责：
- fill：按回退链填写验证码，每一步后独立回读字段值，完全相等才算成功
- submit：多种方式点击/提交续期按钮，并确认页面确实进入下一步
- 两者都以 bool 返回普通失败，不抛异常
"""

from __future__ import annotations

from typing import Optional

from ..config import get_setting
from .errors import SessionUnusable, TransientUIFailure
from .page_state import NEXT_STEP_PHRASES
from .session import BrowserSession, LogFn, noop_log
from .strategy import AttemptLog, Strategy, run_strategies

FILL_STRATEGY_NAMES: tuple[str, ...] = (
    "original_placeholder",
    "input_type_text",
    "javascript_direct",
    "by_attributes",
)
SUBMIT_STRATEGY_NAMES: tuple[str, ...] = (
    "click_with_navigation",
    "click_then_poll_text",
    "scripted_form_submit",
)
CANDIDATE_FIELD_KEYS: tuple[str, ...] = ("captcha", "code", "verify", "verification")

_ASSIGN_VISIBLE_INPUT_JS = """
(code) => {
  const inputs = document.querySelectorAll(
    'input[type="text"], input[placeholder*="画像"], input[placeholder*="数字"]'
  );
  for (const input of inputs) {
    if (input.offsetWidth > 0 && input.offsetHeight > 0) {
      input.value = code;
      input.dispatchEvent(new Event("input", { bubbles: true }));
      input.dispatchEvent(new Event("change", { bubbles: true }));
      return true;
    }
  }
  return false;
}
"""

_ASSIGN_BY_ATTRIBUTES_JS = """
(args) => {
  const assign = (el) => {
    el.value = args.code;
    el.dispatchEvent(new Event("input", { bubbles: true }));
    el.dispatchEvent(new Event("change", { bubbles: true }));
  };
  for (const key of args.keys) {
    const el = document.getElementById(key);
    if (el && el.tagName === "INPUT") {
      assign(el);
      return true;
    }
  }
  for (const key of args.keys) {
    const el = document.querySelector(`input[name="${key}"]`);
    if (el) {
      assign(el);
      return true;
    }
  }
  return false;
}
"""

# 验证码字段存在时只看它；否则看任意文本输入框
_READ_BACK_JS = """
(args) => {
  const target = document.querySelector(`[placeholder="${args.placeholder}"]`);
  if (target) {
    return target.value === args.code;
  }
  for (const input of document.querySelectorAll('input[type="text"]')) {
    if (input.value === args.code) {
      return true;
    }
  }
  return false;
}
"""

_PAGE_ADVANCED_JS = """
(args) => {
  const body = document.body;
  const text = body ? String(body.innerText || "") : "";
  if (text.includes(args.placeholder)) return false;
  if (document.querySelector(`[placeholder="${args.placeholder}"]`)) return false;
  return args.phrases.some((p) => text.includes(p));
}
"""

_SCRIPTED_SUBMIT_JS = """
(keyword) => {
  for (const form of document.querySelectorAll("form")) {
    const btn = form.querySelector(
      `button, input[type="submit"], input[value*="${keyword}"]`
    );
    if (btn) {
      btn.click();
      return true;
    }
  }
  for (const button of document.querySelectorAll('button, input[type="submit"]')) {
    const text = String(button.textContent || "");
    const value = String(button.value || "");
    if (text.includes(keyword) || value.includes(keyword)) {
      button.click();
      return true;
    }
  }
  return false;
}
"""


class FormActionExecutor:
    def __init__(
        self,
        *,
        settings: Optional[dict] = None,
        log_fn: Optional[LogFn] = None,
        settle_ms: int = 3000,
        retry_pause_ms: int = 2000,
    ) -> None:
        self._settings = settings
        self._log = log_fn or noop_log
        self.settle_ms = settle_ms
        self.retry_pause_ms = retry_pause_ms
        self.placeholder = get_setting("site.captcha_placeholder", settings=settings)
        self.renew_label = get_setting("site.renew_button_text", settings=settings)
        self.navigation_timeout_ms = int(
            get_setting("submit.navigation_timeout_ms", 30000, settings=settings)
        )

    @property
    def renew_selector(self) -> str:
        return f"text={self.renew_label}"

    # ---- fill ----

    def read_back_matches(self, session: BrowserSession, code: str) -> bool:
        try:
            return bool(
                session.evaluate(
                    _READ_BACK_JS, {"placeholder": self.placeholder, "code": code}
                )
            )
        except SessionUnusable:
            raise
        except Exception:
            return False

    def _fill_strategies(self, session: BrowserSession, code: str) -> tuple[Strategy, ...]:
        def verify() -> bool:
            return self.read_back_matches(session, code)

        def scripted(script: str, arg) -> None:
            if not session.evaluate(script, arg):
                raise TransientUIFailure("未找到可填写的输入框")

        actions = {
            "original_placeholder": lambda: session.fill(
                f'[placeholder="{self.placeholder}"]', code
            ),
            "input_type_text": lambda: session.fill('input[type="text"]', code),
            "javascript_direct": lambda: scripted(_ASSIGN_VISIBLE_INPUT_JS, code),
            "by_attributes": lambda: scripted(
                _ASSIGN_BY_ATTRIBUTES_JS,
                {"code": code, "keys": list(CANDIDATE_FIELD_KEYS)},
            ),
        }
        return tuple(
            Strategy(name=name, attempt=actions[name], verify=verify)
            for name in FILL_STRATEGY_NAMES
        )

    def fill(
        self,
        session: BrowserSession,
        code: str,
        *,
        attempt_log: Optional[AttemptLog] = None,
    ) -> bool:
        """依次尝试填写策略；只有回读值与 code 完全一致才返回 True。"""
        log = attempt_log if attempt_log is not None else AttemptLog()
        winner = run_strategies(
            self._fill_strategies(session, code),
            attempt_log=log,
            log_fn=self._log,
        )
        if winner:
            self._log(f"✓ 验证码填充成功，策略: {winner}", "info")
            return True
        self._log("❌ 所有验证码填充策略均失败", "error")
        return False

    # ---- submit ----

    def page_advanced(self, session: BrowserSession) -> bool:
        try:
            return bool(
                session.evaluate(
                    _PAGE_ADVANCED_JS,
                    {"placeholder": self.placeholder, "phrases": list(NEXT_STEP_PHRASES)},
                )
            )
        except SessionUnusable:
            raise
        except Exception:
            return False

    def _submit_strategies(self, session: BrowserSession) -> tuple[Strategy, ...]:
        outcome: dict[str, bool] = {}

        def click_with_navigation() -> None:
            outcome["click_with_navigation"] = session.click_expecting_navigation(
                self.renew_selector, timeout=self.navigation_timeout_ms
            )

        def click_then_poll() -> None:
            session.click(self.renew_selector, modality="native")
            session.pause(self.settle_ms)
            self._log(f"   提交后当前URL: {session.url}", "info")

        def scripted_submit() -> None:
            outcome["scripted_form_submit"] = bool(
                session.evaluate(_SCRIPTED_SUBMIT_JS, "継続")
            )
            if outcome["scripted_form_submit"]:
                session.pause(self.settle_ms)

        return (
            Strategy(
                name="click_with_navigation",
                attempt=click_with_navigation,
                verify=lambda: outcome.get("click_with_navigation", False),
            ),
            Strategy(
                name="click_then_poll_text",
                attempt=click_then_poll,
                verify=lambda: self.page_advanced(session),
            ),
            Strategy(
                name="scripted_form_submit",
                attempt=scripted_submit,
                verify=lambda: outcome.get("scripted_form_submit", False),
            ),
        )

    def submit(
        self,
        session: BrowserSession,
        max_retries: Optional[int] = None,
        *,
        attempt_log: Optional[AttemptLog] = None,
    ) -> bool:
        """每轮按三种方式尝试提交，任一成功即返回 True；重试耗尽返回 False。"""
        retries = int(
            max_retries
            if max_retries is not None
            else get_setting("submit.max_retries", 3, settings=self._settings)
        )
        log = attempt_log if attempt_log is not None else AttemptLog()
        for retry in range(retries):
            self._log(f"尝试表单提交，第 {retry + 1} 次", "info")
            session.pause(1000)
            winner = run_strategies(
                self._submit_strategies(session),
                attempt_log=log,
                attempt_index=retry,
                log_fn=self._log,
            )
            if winner:
                self._log(f"✓ 表单提交成功 ({winner})", "info")
                return True
            if retry < retries - 1:
                session.pause(self.retry_pause_ms)
        self._log("❌ 所有表单提交策略均失败", "error")
        return False
