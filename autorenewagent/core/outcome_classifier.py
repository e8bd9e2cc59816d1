"""
续期结果分类模块

职责：
- 以“新到期日 != 上次记录的到期日”作为续期成功判据
- 组装通知文案（成功 / 未生效 / 未到续期时间 / 出错汇总报告）
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Literal, Optional

from .expiry import format_chinese_date


@dataclass
class RenewalOutcome:
    classification: Literal[
        "renewed",
        "unchanged",
        "missing_expiry",
    ]
    previous_expiry: str
    current_expiry: str


def classify_renewal_outcome(*, previous_expiry: str, current_expiry: str) -> RenewalOutcome:
    previous = format_chinese_date(previous_expiry) if previous_expiry else ""
    current = format_chinese_date(current_expiry) if current_expiry else ""
    if not current:
        classification = "missing_expiry"
    elif current != previous:
        classification = "renewed"
    else:
        classification = "unchanged"
    return RenewalOutcome(
        classification=classification,
        previous_expiry=previous,
        current_expiry=current,
    )


def build_success_message(*, new_expiry: str, next_renew_date: str, time_str: str) -> str:
    return (
        "🎉 VPS 续费成功！\n\n"
        f"- 新到期日: `{new_expiry or '无'}`\n"
        f"- 下次可续期日期: `{next_renew_date}`\n\n"
        f"北京时间: {time_str}"
    )


def build_unchanged_message(*, current_expiry: str, time_str: str) -> str:
    return (
        "⚠️ VPS 续费失败或未执行！\n\n"
        f"到期日未发生变化，当前仍为: `{current_expiry}`\n"
        "请检查录屏或日志确认续期流程是否正常。\n\n"
        f"北京时间: {time_str}"
    )


def build_not_due_message(
    *, renew_available_date: str, current_expiry: str, time_str: str
) -> str:
    return (
        "🗓️ 未到续费时间\n\n"
        "网站提示需要到期前一天才能操作。\n"
        f"可续期日期: `{renew_available_date or '未知'}`\n"
        f"当前到期日: `{current_expiry or '未知'}`\n\n"
        f"北京时间: {time_str}"
    )


def build_error_report(
    exc: BaseException,
    *,
    current_url: str,
    page_title: str,
    last_expiry: str,
    time_str: str,
    saved_page: Optional[str] = None,
) -> str:
    """单条汇总诊断报告，替代原始堆栈输出。"""
    stack = traceback.format_exception(type(exc), exc, exc.__traceback__)
    stack_head = "".join(stack).strip().splitlines()[:3]
    lines = [
        "🚨 **VPS 续期脚本执行出错** 🚨",
        "",
        "**错误详情:**",
        f"- 错误类型: `{type(exc).__name__}`",
        f"- 错误消息: `{exc}`",
        f"- 当前页面: `{current_url or 'unknown'}`",
        f"- 页面标题: `{page_title or 'unknown'}`",
        f"- 错误堆栈: `{chr(10).join(stack_head) or 'No stack'}`",
        "",
        "**调试信息:**",
        f"- 脚本执行时间: {time_str}",
        f"- 最后处理的到期日: `{last_expiry or '无'}`",
    ]
    if saved_page:
        lines.append(f"- 错误页面状态已保存到 {saved_page}")
    lines.extend(["", f"北京时间: {time_str}"])
    return "\n".join(lines)
