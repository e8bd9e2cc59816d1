"""
浏览器会话能力接口

职责：
- 定义引擎唯一依赖的 BrowserSession 能力面（导航/查询/脚本/点击/填写/截图/frame 枚举）
- 提供基于 Playwright sync API 的适配实现 PlaywrightSession
- 页内脚本按 RPC 对待：只传单个可 JSON 序列化参数，只收可序列化结果
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Protocol

from playwright.sync_api import Error as PlaywrightError, Frame, Page

from .errors import SessionUnusable, TransientUIFailure, is_session_closed_error

LogFn = Callable[[str, str], None]
ClickModality = Literal["native", "programmatic", "dispatch"]
WaitUntil = Literal["load", "domcontentloaded", "networkidle", "commit"]

CLICK_MODALITIES: tuple[ClickModality, ...] = ("native", "programmatic", "dispatch")


def noop_log(_message: str, _level: str = "info") -> None:
    return None


@dataclass(frozen=True)
class FrameInfo:
    index: int
    url: str
    name: str
    parent_url: str = "main"

    def to_dict(self) -> dict:
        return {"url": self.url, "name": self.name, "parentFrame": self.parent_url}


@dataclass(frozen=True)
class ElementQuery:
    """DOM 探测结果；未找到时 found=False，不抛异常。"""

    found: bool
    selector: str
    tag: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    visible: bool = False

    @classmethod
    def missing(cls, selector: str) -> "ElementQuery":
        return cls(found=False, selector=selector)


class BrowserSession(Protocol):
    @property
    def url(self) -> str: ...

    def title(self) -> str: ...

    def navigate(
        self, url: str, *, wait_until: WaitUntil = "networkidle", timeout: int = 30000
    ) -> None: ...

    def reload(
        self, *, wait_until: WaitUntil = "networkidle", timeout: int = 30000
    ) -> None: ...

    def query_selector(
        self, selector: str, *, scope: Optional[int] = None
    ) -> ElementQuery: ...

    def evaluate(
        self, script: str, arg: Any = None, *, scope: Optional[int] = None
    ) -> Any: ...

    def click(
        self,
        selector: str,
        *,
        modality: ClickModality = "native",
        scope: Optional[int] = None,
        timeout: int = 5000,
    ) -> None: ...

    def click_expecting_navigation(
        self, selector: str, *, timeout: int = 30000, wait_until: WaitUntil = "networkidle"
    ) -> bool: ...

    def fill(self, selector: str, text: str, *, timeout: int = 5000) -> None: ...

    def screenshot(self, path: str, *, full_page: bool = True) -> None: ...

    def element_screenshot(self, selector: str, path: str) -> None: ...

    def frames(self) -> list[FrameInfo]: ...

    def wait_for_selector(
        self, selector: str, *, timeout: int = 3000, scope: Optional[int] = None
    ) -> bool: ...

    def wait_for_navigation(
        self, *, timeout: int = 30000, wait_until: WaitUntil = "networkidle"
    ) -> bool: ...

    def content(self, *, scope: Optional[int] = None) -> str: ...

    def pause(self, ms: int) -> None: ...


_DESCRIBE_ELEMENT_JS = """
(el) => {
  const attrs = {};
  for (const a of Array.from(el.attributes || [])) {
    attrs[a.name] = String(a.value).slice(0, 200);
  }
  return {
    tag: (el.tagName || "").toLowerCase(),
    attributes: attrs,
    visible: el.offsetWidth > 0 && el.offsetHeight > 0,
  };
}
"""

_PROGRAMMATIC_CLICK_JS = """
(sel) => {
  const el = document.querySelector(sel);
  if (el && typeof el.click === "function") {
    el.click();
    return true;
  }
  return false;
}
"""

_DISPATCH_CLICK_JS = """
(sel) => {
  const el = document.querySelector(sel);
  if (el) {
    el.dispatchEvent(new MouseEvent("click", { bubbles: true, cancelable: true }));
    return true;
  }
  return false;
}
"""


def _translate_errors(fn):
    """浏览器关闭类错误统一转为 SessionUnusable，其余原样抛出。"""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PlaywrightError as exc:
            if is_session_closed_error(exc):
                raise SessionUnusable(str(exc)) from exc
            raise

    return wrapper


class PlaywrightSession:
    """
    BrowserSession 的 Playwright 实现。

    scope 为 frames() 返回的 FrameInfo.index；None 表示主文档。
    frame 列表每次调用都重新读取，不跨调用缓存。
    """

    def __init__(self, page: Page, log_fn: Optional[LogFn] = None) -> None:
        self.page = page
        self._log = log_fn or noop_log

    @property
    def url(self) -> str:
        return self.page.url

    @_translate_errors
    def title(self) -> str:
        return self.page.title()

    def _target(self, scope: Optional[int]) -> Page | Frame:
        if scope is None:
            return self.page
        frames = self.page.frames
        if scope < 0 or scope >= len(frames):
            raise TransientUIFailure(f"frame {scope} 已不存在")
        return frames[scope]

    @_translate_errors
    def navigate(
        self, url: str, *, wait_until: WaitUntil = "networkidle", timeout: int = 30000
    ) -> None:
        self.page.goto(url, wait_until=wait_until, timeout=timeout)

    @_translate_errors
    def reload(
        self, *, wait_until: WaitUntil = "networkidle", timeout: int = 30000
    ) -> None:
        self.page.reload(wait_until=wait_until, timeout=timeout)

    @_translate_errors
    def query_selector(
        self, selector: str, *, scope: Optional[int] = None
    ) -> ElementQuery:
        try:
            handle = self._target(scope).query_selector(selector)
        except TransientUIFailure:
            return ElementQuery.missing(selector)
        except PlaywrightError as exc:
            if is_session_closed_error(exc):
                raise
            return ElementQuery.missing(selector)
        if handle is None:
            return ElementQuery.missing(selector)
        try:
            info = handle.evaluate(_DESCRIBE_ELEMENT_JS) or {}
        except PlaywrightError:
            info = {}
        return ElementQuery(
            found=True,
            selector=selector,
            tag=str(info.get("tag", "")),
            attributes=dict(info.get("attributes") or {}),
            visible=bool(info.get("visible", False)),
        )

    @_translate_errors
    def evaluate(self, script: str, arg: Any = None, *, scope: Optional[int] = None) -> Any:
        target = self._target(scope)
        if arg is None:
            return target.evaluate(script)
        return target.evaluate(script, arg)

    @_translate_errors
    def click(
        self,
        selector: str,
        *,
        modality: ClickModality = "native",
        scope: Optional[int] = None,
        timeout: int = 5000,
    ) -> None:
        target = self._target(scope)
        if modality == "native":
            target.click(selector, timeout=timeout)
            return
        script = _PROGRAMMATIC_CLICK_JS if modality == "programmatic" else _DISPATCH_CLICK_JS
        if not target.evaluate(script, selector):
            raise TransientUIFailure(f"{modality} 点击未找到元素: {selector}")

    @_translate_errors
    def click_expecting_navigation(
        self, selector: str, *, timeout: int = 30000, wait_until: WaitUntil = "networkidle"
    ) -> bool:
        try:
            with self.page.expect_navigation(wait_until=wait_until, timeout=timeout):
                self.page.click(selector, timeout=timeout)
            return True
        except PlaywrightError as exc:
            if is_session_closed_error(exc):
                raise
            self._log(f"   ⚠️ 点击+导航等待失败: {exc}", "warn")
            return False

    @_translate_errors
    def fill(self, selector: str, text: str, *, timeout: int = 5000) -> None:
        self.page.locator(selector).first.fill(text, timeout=timeout)

    @_translate_errors
    def screenshot(self, path: str, *, full_page: bool = True) -> None:
        self.page.screenshot(path=path, full_page=full_page)

    @_translate_errors
    def element_screenshot(self, selector: str, path: str) -> None:
        self.page.locator(selector).first.screenshot(path=path)

    @_translate_errors
    def frames(self) -> list[FrameInfo]:
        out: list[FrameInfo] = []
        for idx, frame in enumerate(self.page.frames):
            parent = frame.parent_frame
            out.append(
                FrameInfo(
                    index=idx,
                    url=frame.url,
                    name=frame.name,
                    parent_url=parent.url if parent else "main",
                )
            )
        return out

    @_translate_errors
    def wait_for_selector(
        self, selector: str, *, timeout: int = 3000, scope: Optional[int] = None
    ) -> bool:
        try:
            self._target(scope).wait_for_selector(selector, timeout=timeout)
            return True
        except TransientUIFailure:
            return False
        except PlaywrightError as exc:
            if is_session_closed_error(exc):
                raise
            return False

    @_translate_errors
    def wait_for_navigation(
        self, *, timeout: int = 30000, wait_until: WaitUntil = "networkidle"
    ) -> bool:
        try:
            self.page.wait_for_load_state(wait_until, timeout=timeout)
            return True
        except PlaywrightError as exc:
            if is_session_closed_error(exc):
                raise
            return False

    @_translate_errors
    def content(self, *, scope: Optional[int] = None) -> str:
        return self._target(scope).content()

    def pause(self, ms: int) -> None:
        self.page.wait_for_timeout(ms)
