"""
页面状态分类模块

职责：
- 单次页内脚本读取 DOM 快照（验证码图片/输入框、续期按钮、可见文本）
- 快照 -> PageState 的纯函数分类，便于测试与回放
- 任何评估异常（例如检查途中发生导航）都归为 indeterminate，不向上抛出
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from ..config import get_setting
from .errors import SessionUnusable
from .session import BrowserSession, LogFn, noop_log

PageStateKind = Literal[
    "needs_legacy_captcha",
    "complete",
    "has_blocking_error",
    "indeterminate",
]

# 按顺序匹配，命中第一个即返回
BLOCKING_PHRASES: tuple[str, ...] = (
    "利用期限の1日前から更新手続きが可能です",
    "エラー",
    "error",
    "失敗",
)
NEXT_STEP_PHRASES: tuple[str, ...] = ("更新手続き", "契約更新")
NOT_DUE_PHRASE = BLOCKING_PHRASES[0]
# 快照脚本抛错时的 indeterminate 细节：页面未被读取
EVALUATION_FAILED = "evaluation_failed"


@dataclass(frozen=True)
class PageState:
    kind: PageStateKind
    detail: str = ""

    @classmethod
    def needs_legacy_captcha(cls) -> "PageState":
        return cls("needs_legacy_captcha")

    @classmethod
    def complete(cls, detail: str = "") -> "PageState":
        return cls("complete", detail)

    @classmethod
    def blocking_error(cls, phrase: str) -> "PageState":
        return cls("has_blocking_error", phrase)

    @classmethod
    def indeterminate(cls, detail: str = "") -> "PageState":
        return cls("indeterminate", detail)

    @property
    def is_complete(self) -> bool:
        return self.kind == "complete"

    @property
    def needs_captcha(self) -> bool:
        return self.kind == "needs_legacy_captcha"

    @property
    def is_blocked(self) -> bool:
        return self.kind == "has_blocking_error"

    @property
    def is_unreadable(self) -> bool:
        return self.kind == "indeterminate" and self.detail == EVALUATION_FAILED

    @property
    def is_not_due(self) -> bool:
        return self.is_blocked and self.detail == NOT_DUE_PHRASE

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.detail}


@dataclass(frozen=True)
class PageSnapshot:
    has_data_image: bool = False
    has_captcha_input: bool = False
    has_renew_control: bool = False
    body_text: str = ""
    url: str = ""

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> "PageSnapshot":
        raw = raw or {}
        return cls(
            has_data_image=bool(raw.get("hasDataImage", False)),
            has_captcha_input=bool(raw.get("hasCaptchaInput", False)),
            has_renew_control=bool(raw.get("hasRenewControl", False)),
            body_text=str(raw.get("bodyText") or ""),
            url=str(raw.get("url") or ""),
        )


SNAPSHOT_SCRIPT = """
(opts) => {
  const label = opts.renewLabel;
  const controls = Array.from(
    document.querySelectorAll("button, input[type='submit'], input[type='button'], a")
  );
  const hasRenewControl = controls.some((el) => {
    const text = String(el.textContent || "");
    const value = String(el.value || "");
    return text.includes(label) || value.includes(label);
  });
  const body = document.body;
  return {
    hasDataImage: !!document.querySelector('img[src^="data:"]'),
    hasCaptchaInput: !!document.querySelector(`[placeholder="${opts.placeholder}"]`),
    hasRenewControl,
    bodyText: body ? String(body.innerText || "") : "",
    url: window.location.href,
  };
}
"""


def classify_snapshot(
    snapshot: PageSnapshot,
    *,
    blocking_phrases: tuple[str, ...] = BLOCKING_PHRASES,
    next_step_phrases: tuple[str, ...] = NEXT_STEP_PHRASES,
) -> PageState:
    """
    快照分类（纯函数）：
    1) data-URI 图片或验证码输入框 -> needs_legacy_captcha
    2) 续期按钮存在 -> complete
    3) 命中阻断/错误文案 -> has_blocking_error(文案)
    4) 已进入下一步的文案 -> complete
    5) 其他 -> indeterminate
    """
    if snapshot.has_data_image or snapshot.has_captcha_input:
        return PageState.needs_legacy_captcha()
    if snapshot.has_renew_control:
        return PageState.complete("renewal_button")
    text = snapshot.body_text
    for phrase in blocking_phrases:
        if phrase in text:
            return PageState.blocking_error(phrase)
    for phrase in next_step_phrases:
        if phrase in text:
            return PageState.complete("renewal_process")
    return PageState.indeterminate()


def read_page_snapshot(session: BrowserSession, settings: Optional[dict] = None) -> PageSnapshot:
    raw = session.evaluate(
        SNAPSHOT_SCRIPT,
        {
            "placeholder": get_setting("site.captcha_placeholder", settings=settings),
            "renewLabel": get_setting("site.renew_button_text", settings=settings),
        },
    )
    return PageSnapshot.from_raw(raw if isinstance(raw, dict) else None)


def classify_page_state(
    session: BrowserSession,
    *,
    settings: Optional[dict] = None,
    log_fn: Optional[LogFn] = None,
) -> PageState:
    """读取当前文档快照并分类；评估失败返回 indeterminate。"""
    log = log_fn or noop_log
    try:
        snapshot = read_page_snapshot(session, settings)
    except SessionUnusable:
        raise
    except Exception as exc:
        log(f"   ⚠️ 检测页面状态时出错: {exc}", "warn")
        return PageState.indeterminate(EVALUATION_FAILED)
    return classify_snapshot(snapshot)
