"""
到期日读取与格式化

职责：
- 从契约信息页的 th/td 表格读取“利用期限”
- 中文日期规范化为 yyyy年MM月dd日，计算下次可续期日期（到期日前一天）
- 本地持久化上一次读到的到期日（expire.txt）
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .session import BrowserSession, LogFn, noop_log

_CHINESE_DATE_RE = re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日")
_RETRY_AFTER_RE = re.compile(r"(\d{4}年\d{1,2}月\d{1,2}日)以降にお試しください")
BEIJING_TZ = timezone(timedelta(hours=8))

_TH_TD_PAIRS_JS = """
() => {
  const results = [];
  for (const th of Array.from(document.querySelectorAll("th"))) {
    let td = th.nextElementSibling;
    while (td && td.tagName !== "TD") {
      td = td.nextElementSibling;
    }
    results.push({
      th: String(th.textContent || "").trim(),
      td: td ? String(td.textContent || "").trim() : "",
    });
  }
  return results;
}
"""


def parse_chinese_date(text: Optional[str]) -> Optional[date]:
    m = _CHINESE_DATE_RE.search(text or "")
    if not m:
        return None
    y, mo, d = (int(x) for x in m.groups())
    try:
        return date(y, mo, d)
    except ValueError:
        return None


def to_chinese_date(value: date) -> str:
    return f"{value.year}年{value.month:02d}月{value.day:02d}日"


def format_chinese_date(text: Optional[str]) -> str:
    """2025年7月7日 -> 2025年07月07日；无法解析时原样返回，空值返回“未知”。"""
    parsed = parse_chinese_date(text)
    if parsed is None:
        return text or "未知"
    return to_chinese_date(parsed)


def next_renew_available_date(text: Optional[str]) -> str:
    parsed = parse_chinese_date(text)
    if parsed is None:
        return "未知"
    return to_chinese_date(parsed - timedelta(days=1))


def parse_retry_after_date(body_text: str) -> str:
    m = _RETRY_AFTER_RE.search(body_text or "")
    return format_chinese_date(m.group(1)) if m else ""


def extract_expiry_from_pairs(pairs: list[dict], label: str) -> str:
    for item in pairs or []:
        if str(item.get("th", "")) != label:
            continue
        td = re.sub(r"\s", "", str(item.get("td", "")))
        m = re.search(r"\d{4}年\d{1,2}月\d{1,2}日", td)
        return m.group(0) if m else str(item.get("td", ""))
    return ""


def read_expiration_date(
    session: BrowserSession,
    label: str = "利用期限",
    *,
    log_fn: Optional[LogFn] = None,
) -> str:
    """读取页面上的到期日原文；失败返回空串。"""
    try:
        pairs = session.evaluate(_TH_TD_PAIRS_JS) or []
    except Exception as exc:
        (log_fn or noop_log)(f"⚠️ 无法读取到期日: {exc}", "warn")
        return ""
    return extract_expiry_from_pairs(pairs, label)


def load_last_expiry(path: str | Path) -> str:
    p = Path(path)
    if not p.exists():
        return ""
    return p.read_text(encoding="utf-8").strip()


def save_expiry(path: str | Path, value: str) -> None:
    p = Path(path)
    if p.parent and not p.parent.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(value, encoding="utf-8")


def beijing_time_string(now: Optional[datetime] = None) -> str:
    current = (now or datetime.now(timezone.utc)).astimezone(BEIJING_TZ)
    return current.strftime("%Y-%m-%d %H:%M")
