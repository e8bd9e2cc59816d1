"""
图片验证码处理模块

职责：
- 按选择器回退链定位验证码图片；找不到视为“无需验证码”，直接成功
- 图片 data URI 交给识别服务；失败或结果过短则截图留证并进入下一次 try
- 识别结果经 FormActionExecutor 填写并提交；提交失败则强制刷新后重试
"""

from __future__ import annotations

from typing import Optional

from ..config import get_setting
from .debug_capture import DebugCapture
from .errors import RecognitionFailure, SessionUnusable
from .form_actions import FormActionExecutor
from .recognition import MIN_CODE_LENGTH, RecognitionClient
from .session import BrowserSession, LogFn, noop_log
from .strategy import AttemptLog

CAPTCHA_IMAGE_SELECTORS: tuple[str, ...] = (
    'img[src^="data:"]',
    'img[src*="captcha"]',
    'img[src*="verify"]',
    ".captcha img",
    "[data-captcha] img",
)

_READ_IMAGE_SRC_JS = """
(sel) => {
  const img = document.querySelector(sel);
  return img ? String(img.src || "") : "";
}
"""


class CaptchaResolver:
    def __init__(
        self,
        *,
        recognizer: Optional[RecognitionClient] = None,
        form_executor: Optional[FormActionExecutor] = None,
        debug_capture: Optional[DebugCapture] = None,
        settings: Optional[dict] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self._settings = settings
        self._log = log_fn or noop_log
        self.recognizer = recognizer or RecognitionClient()
        self.form = form_executor or FormActionExecutor(settings=settings, log_fn=self._log)
        self.debug_capture = debug_capture or DebugCapture(
            get_setting("debug.output_dir", settings=settings), log_fn=self._log
        )
        self.min_length = int(
            get_setting("recognition.min_length", MIN_CODE_LENGTH, settings=settings)
        )
        self.lookup_rounds = int(
            get_setting("captcha.image_lookup_rounds", 3, settings=settings)
        )

    def locate_image(self, session: BrowserSession) -> Optional[str]:
        """返回第一个命中的图片选择器；多轮仍找不到返回 None。"""
        for round_idx in range(self.lookup_rounds):
            for selector in CAPTCHA_IMAGE_SELECTORS:
                if session.query_selector(selector).found:
                    self._log(f"   找到验证码图片，使用选择器: {selector}", "info")
                    return selector
            if round_idx < self.lookup_rounds - 1:
                self._log(
                    f"   验证码图片查找尝试 {round_idx + 1} 失败，等待后重试...", "info"
                )
                session.pause(1000)
        return None

    def _read_payload(self, session: BrowserSession, selector: str) -> str:
        try:
            return str(session.evaluate(_READ_IMAGE_SRC_JS, selector) or "")
        except SessionUnusable:
            raise
        except Exception as exc:
            raise RecognitionFailure(f"读取验证码图片失败: {exc}") from exc

    def _recognize(self, session: BrowserSession, selector: str) -> str:
        payload = self._read_payload(session, selector)
        if not payload:
            raise RecognitionFailure("验证码图片 src 为空")
        result = self.recognizer.recognize(payload)
        if not result.is_valid(self.min_length):
            raise RecognitionFailure(
                f"识别结果过短 (len={result.length} < {self.min_length})"
            )
        return result.code

    def solve(self, session: BrowserSession, max_tries: Optional[int] = None) -> bool:
        """
        最多 max_tries 次：定位 -> 识别 -> 填写 -> 提交。

        Returns:
            True：无需验证码或提交成功；False：次数耗尽
        """
        tries = int(
            max_tries
            if max_tries is not None
            else get_setting("captcha.max_tries", 3, settings=self._settings)
        )
        attempt_log = AttemptLog()

        for attempt in range(1, tries + 1):
            self._log(f"开始图片验证码处理尝试 {attempt}/{tries}", "info")

            selector = self.locate_image(session)
            if selector is None:
                self._log("无验证码图片，跳过验证码填写", "info")
                self.debug_capture.save_html(session, "no_captcha.html")
                attempt_log.append("locate_image", attempt, "success")
                return True

            try:
                code = self._recognize(session, selector)
            except RecognitionFailure as exc:
                self._log(f"⚠️ 验证码识别失败 (第 {attempt} 次): {exc}", "warn")
                attempt_log.append("recognize", attempt, "fail", str(exc))
                self.debug_capture.capture_element(
                    session, selector, f"captcha_failed_{attempt}.png"
                )
                continue
            attempt_log.append("recognize", attempt, "success")

            if not self.form.fill(session, code, attempt_log=attempt_log):
                self._log(f"⚠️ 验证码填充失败 (第 {attempt} 次)", "warn")
                continue

            if self.form.submit(session, attempt_log=attempt_log):
                self._log(f"✓ 验证码尝试成功 (第 {attempt} 次)", "info")
                return True

            self._log(f"⚠️ 验证码尝试失败 (第 {attempt} 次)，刷新重试...", "warn")
            try:
                session.reload(wait_until="networkidle", timeout=30000)
            except SessionUnusable:
                raise
            except Exception as exc:
                self._log(f"⚠️ 刷新页面失败: {exc}", "warn")

        self._log(
            f"❌ 图片验证码 {tries} 次尝试均未成功 (记录 {len(attempt_log)} 条)", "error"
        )
        return False
