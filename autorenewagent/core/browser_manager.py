"""
浏览器管理模块：统一管理 Playwright 浏览器启动、代理、录屏与事件日志。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from playwright.sync_api import Browser, BrowserContext, Page, sync_playwright

from ..config import get_proxy_server, load_settings
from .session import LogFn, PlaywrightSession, noop_log

DEFAULT_LAUNCH_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
)


@dataclass
class LaunchedBrowser:
    playwright: Any
    browser: Browser
    context: BrowserContext
    page: Page
    session: PlaywrightSession

    def video_path(self) -> Optional[str]:
        """录屏文件路径；上下文关闭后才写完整。"""
        try:
            video = self.page.video
            return str(video.path()) if video else None
        except Exception:
            return None

    def close(self) -> None:
        try:
            self.context.close()
            self.browser.close()
        finally:
            try:
                self.playwright.stop()
            except Exception:
                pass


class BrowserManager:
    """
    管理浏览器生命周期与配置，避免业务流程中重复拼装启动参数。
    """

    def __init__(self, log_fn: Optional[LogFn] = None, settings: Optional[dict] = None) -> None:
        self._log = log_fn or noop_log
        self._settings = settings if settings is not None else load_settings()

    def launch_options(self) -> dict:
        browser_cfg = self._settings.get("browser", {})
        slow_mo = int(browser_cfg.get("slow_mo", 0) or 0)
        options: dict[str, Any] = {
            "headless": bool(browser_cfg.get("headless", True)),
            "slow_mo": slow_mo if slow_mo > 0 else None,
            "executable_path": browser_cfg.get("executable_path") or None,
            "proxy": get_proxy_server(),
            "args": list(DEFAULT_LAUNCH_ARGS),
        }
        # 清理 None 参数
        return {k: v for k, v in options.items() if v is not None}

    def context_options(self) -> dict:
        browser_cfg = self._settings.get("browser", {})
        viewport = browser_cfg.get("viewport") or {"width": 1280, "height": 720}
        options: dict[str, Any] = {
            "viewport": viewport,
            "user_agent": browser_cfg.get("user_agent") or None,
        }
        record_dir = browser_cfg.get("record_video_dir")
        if record_dir:
            Path(record_dir).mkdir(parents=True, exist_ok=True)
            options["record_video_dir"] = str(record_dir)
            options["record_video_size"] = viewport
        return {k: v for k, v in options.items() if v is not None}

    def launch(self) -> LaunchedBrowser:
        """启动浏览器并返回会话。"""
        launch_args = self.launch_options()
        if "proxy" in launch_args:
            self._log(f"✓ 使用代理: {launch_args['proxy']['server']}")

        playwright = sync_playwright().start()
        browser = None
        try:
            browser = playwright.chromium.launch(**launch_args)
            context = browser.new_context(**self.context_options())
            page = context.new_page()
        except Exception:
            # 启动中途失败时调用方拿不到 LaunchedBrowser，需在此释放
            if browser is not None:
                try:
                    browser.close()
                except Exception as exc:
                    self._log(f"⚠️ 关闭浏览器失败: {exc}", "warn")
            playwright.stop()
            raise

        self._attach_basic_listeners(page)
        self._attach_context_listeners(context)

        return LaunchedBrowser(
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
            session=PlaywrightSession(page, log_fn=self._log),
        )

    def _attach_basic_listeners(self, page: Page) -> None:
        """采集页面基础错误信息，写入日志便于排查。"""
        try:
            page.on(
                "console",
                lambda msg: self._log(f"[console:{msg.type}] {msg.text}", "warn")
                if msg.type in ("error", "warning")
                else None,
            )
            page.on(
                "pageerror",
                lambda exc: self._log(f"[pageerror] {exc}", "error"),
            )
        except Exception:
            pass

    def _attach_context_listeners(self, context: BrowserContext) -> None:
        try:
            context.on(
                "requestfailed",
                lambda req: self._log(
                    f"[requestfailed] {req.method} {req.url}", "warn"
                ),
            )
        except Exception:
            pass
