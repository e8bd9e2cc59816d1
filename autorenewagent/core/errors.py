"""
续期引擎错误分类

职责：
- 区分可吸收的失败（转为 bool / PageState）与必须上抛的终态失败
- 只有 RecoveryExhausted 与 SessionUnusable 允许越过引擎边界
"""

from __future__ import annotations


class RenewalError(Exception):
    """Base class for renewal engine errors."""


class TransientUIFailure(RenewalError):
    """元素未找到或点击未生效；在当前战术循环内重试，不上抛。"""


class RecognitionFailure(RenewalError):
    """识别服务不可达或返回过短结果；计入当前 try 的失败。"""


class RecoveryExhausted(RenewalError):
    """恢复级联全部失败，终态。"""

    def __init__(self, message: str, *, artifacts: list[str] | None = None) -> None:
        super().__init__(message)
        self.artifacts = list(artifacts or [])


class SessionUnusable(RenewalError):
    """浏览器会话已关闭或崩溃，无法继续任何操作。"""


_CLOSED_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "has been disconnected",
    "connection closed",
)


def is_session_closed_error(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _CLOSED_MARKERS)
