"""
调试现场采集

职责：
- 失败时保存 DOM、frame 内容与整页截图，供事后排查与上传
- 纯副作用：任何采集失败只记 warn，不影响调用方流程
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from ..config import get_setting
from .errors import SessionUnusable
from .session import BrowserSession, LogFn, noop_log

FRAME_PROBE_SELECTORS: tuple[str, ...] = (
    'input[type="checkbox"]',
    "button",
    ".checkbox",
    ".cb-lb",
    ".ctp-checkbox",
    ".ctp-checkbox-label",
    ".cf-turnstile-wrapper",
    '[role="checkbox"]',
    "[tabindex]",
    "div[onclick]",
    "span[onclick]",
)

_STATE_INFO_JS = """
() => {
  const body = document.body;
  return {
    url: window.location.href,
    title: document.title,
    bodyText: body ? String(body.innerText || "").substring(0, 1000) : "",
    forms: Array.from(document.querySelectorAll("form")).map((form) => ({
      action: form.action,
      method: form.method,
      inputs: Array.from(form.querySelectorAll("input")).map((input) => ({
        type: input.type,
        name: input.name,
        placeholder: input.placeholder,
        value: input.value ? "***" : "",
      })),
    })),
    buttons: Array.from(document.querySelectorAll("button, input[type='submit']")).map((btn) => ({
      text: btn.textContent || btn.value,
      type: btn.type,
      disabled: btn.disabled,
    })),
    images: Array.from(document.querySelectorAll("img")).map((img) => ({
      src: String(img.src || "").substring(0, 100),
      alt: img.alt,
    })),
  };
}
"""

_FRAME_PROBE_JS = """
(selectors) => {
  const elements = [];
  for (const selector of selectors) {
    document.querySelectorAll(selector).forEach((el, idx) => {
      const r = el.getBoundingClientRect();
      elements.push({
        selector,
        index: idx,
        tagName: el.tagName,
        className: String(el.className || ""),
        id: el.id,
        textContent: String(el.textContent || "").trim().substring(0, 100),
        attributes: Array.from(el.attributes).map((a) => ({ name: a.name, value: a.value })),
        boundingRect: { x: r.x, y: r.y, width: r.width, height: r.height },
        visible: el.offsetWidth > 0 && el.offsetHeight > 0,
      });
    });
  }
  return elements;
}
"""


def artifact_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 时间戳，':' 与 '.' 替换为 '-'，可安全用作文件名。"""
    current = now or datetime.now(timezone.utc)
    return current.isoformat().replace(":", "-").replace(".", "-")


class DebugCapture:
    """调试文件写入器；artifacts 记录本实例写出的所有文件路径。"""

    def __init__(
        self,
        output_dir: Optional[str | Path] = None,
        *,
        log_fn: Optional[LogFn] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        raw_dir = output_dir or get_setting("debug.output_dir", "storage/debug")
        self.output_dir = Path(raw_dir).expanduser()
        self._log = log_fn or noop_log
        self._clock = clock
        self.artifacts: list[str] = []

    def _path(self, filename: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir / filename

    def _write_text(self, filename: str, text: str) -> str:
        path = self._path(filename)
        path.write_text(text, encoding="utf-8")
        self.artifacts.append(str(path))
        return str(path)

    def _write_json(self, filename: str, payload: Any) -> str:
        return self._write_text(
            filename, json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        )

    def capture_state(self, session: BrowserSession, reason: str) -> list[str]:
        """保存 debug_state_<reason>_<ts>.{html,json,png}。"""
        base = f"debug_state_{reason}_{artifact_timestamp(self._clock())}"
        written: list[str] = []
        try:
            written.append(self._write_text(f"{base}.html", session.content()))
            info = session.evaluate(_STATE_INFO_JS)
            written.append(self._write_json(f"{base}.json", info or {}))
            png = self._path(f"{base}.png")
            session.screenshot(str(png), full_page=True)
            self.artifacts.append(str(png))
            written.append(str(png))
            self._log(f"📸 调试状态已保存: {base}.*", "info")
        except SessionUnusable as exc:
            self._log(f"⚠️ 会话已不可用，调试状态不完整: {exc}", "warn")
        except Exception as exc:
            self._log(f"⚠️ 保存调试状态失败: {exc}", "warn")
        return written

    def capture_frames(self, session: BrowserSession) -> list[str]:
        """逐 frame 保存 turnstile_debug_frame_<i>_<ts>.{json,html}。"""
        timestamp = artifact_timestamp(self._clock())
        written: list[str] = []
        try:
            frames = session.frames()
        except Exception as exc:
            self._log(f"⚠️ 保存 iframe 调试信息失败: {exc}", "warn")
            return written

        for frame in frames:
            try:
                frame_content = session.content(scope=frame.index)
                try:
                    clickable = session.evaluate(
                        _FRAME_PROBE_JS, list(FRAME_PROBE_SELECTORS), scope=frame.index
                    ) or []
                except Exception:
                    clickable = []
                base = f"turnstile_debug_frame_{frame.index}_{timestamp}"
                written.append(
                    self._write_json(
                        f"{base}.json",
                        {
                            "frameInfo": frame.to_dict(),
                            "clickableElements": clickable,
                            "frameContent": frame_content,
                        },
                    )
                )
                written.append(self._write_text(f"{base}.html", frame_content))
                self._log(
                    f"   保存 frame {frame.index} 调试信息: {frame.url}，"
                    f"找到 {len(clickable)} 个可能的可点击元素",
                    "info",
                )
            except Exception as exc:
                self._log(f"   ⚠️ 无法获取 frame {frame.index} 详细信息: {exc}", "warn")
        return written

    def save_html(self, session: BrowserSession, name: str) -> Optional[str]:
        try:
            return self._write_text(name, session.content())
        except Exception as exc:
            self._log(f"⚠️ 保存页面 HTML 失败 ({name}): {exc}", "warn")
            return None

    def capture_element(
        self, session: BrowserSession, selector: str, name: str
    ) -> Optional[str]:
        try:
            path = self._path(name)
            session.element_screenshot(selector, str(path))
            self.artifacts.append(str(path))
            return str(path)
        except Exception as exc:
            self._log(f"⚠️ 元素截图失败 ({selector}): {exc}", "warn")
            return None
