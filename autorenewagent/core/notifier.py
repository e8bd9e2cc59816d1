"""
通知与归档模块

职责：
- Telegram 推送（Markdown），未配置时跳过
- WebDAV 上传录屏与调试文件，返回可直接拼进通知的状态文本
- 汇总一次执行的最终通知文案（一次执行只发一条）
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import httpx

from ..config import get_telegram_config, get_webdav_config
from .session import LogFn, noop_log

DEBUG_FILE_PREFIXES: tuple[str, ...] = ("turnstile_debug_frame_", "debug_state_")
DEBUG_FILE_SUFFIXES: tuple[str, ...] = (".json", ".html")


def send_telegram_message(
    message: str,
    *,
    log_fn: Optional[LogFn] = None,
    client: Optional[httpx.Client] = None,
) -> bool:
    log = log_fn or noop_log
    bot_token, chat_id = get_telegram_config()
    if not bot_token or not chat_id:
        log("Telegram bot token 或 chat id 未设置，跳过通知", "warn")
        return False
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    payload = {"chat_id": chat_id, "text": message, "parse_mode": "Markdown"}
    try:
        if client is not None:
            resp = client.post(url, json=payload)
        else:
            resp = httpx.post(url, json=payload, timeout=15.0)
    except httpx.HTTPError as exc:
        log(f"❌ Telegram 消息发送异常: {exc}", "error")
        return False
    if resp.status_code >= 400:
        log(f"❌ Telegram 消息发送失败: {resp.status_code} {resp.reason_phrase}", "error")
        return False
    return True


def remote_path_for(remote_name: str, save_path: str = "") -> str:
    remote_dir = (save_path or "").rstrip("/")
    return f"{remote_dir}/{remote_name}" if remote_dir else remote_name


def upload_to_webdav(
    local_file: str | Path,
    remote_name: str,
    *,
    log_fn: Optional[LogFn] = None,
    client: Optional[httpx.Client] = None,
) -> str:
    """
    上传文件到 WebDAV。

    Returns:
        str: 状态文本；未配置 WebDAV 时为空串
    """
    log = log_fn or noop_log
    cfg = get_webdav_config()
    if not cfg["url"] or not cfg["username"] or not cfg["password"]:
        log("WebDAV 未配置，跳过上传", "info")
        return ""

    full_remote_path = remote_path_for(remote_name, cfg["save_path"])
    url = f"{cfg['url'].rstrip('/')}/{full_remote_path}"
    auth = (cfg["username"], cfg["password"])
    try:
        data = Path(local_file).read_bytes()
        if client is not None:
            resp = client.put(url, content=data, auth=auth)
        else:
            resp = httpx.put(url, content=data, auth=auth, timeout=60.0)
        if resp.status_code >= 400:
            raise RuntimeError(f"Upload failed: {resp.status_code} {resp.reason_phrase}")
    except (OSError, httpx.HTTPError, RuntimeError) as exc:
        log(f"❌ WebDAV 上传失败: {exc}", "error")
        return f"❌ WebDAV 上传失败: `{exc}`"

    log(f"✓ WebDAV 上传成功: {url}", "info")
    return f"✅ 录屏已成功上传到 WebDAV。\n路径: `{full_remote_path}`"


def collect_debug_artifacts(
    directory: str | Path, extra: Iterable[str] = ()
) -> list[Path]:
    """收集需要归档的调试文件（frame 诊断 + 状态快照），按文件名排序去重。"""
    root = Path(directory)
    found: dict[str, Path] = {}
    if root.is_dir():
        for p in root.iterdir():
            if (
                p.is_file()
                and p.name.startswith(DEBUG_FILE_PREFIXES)
                and p.suffix in DEBUG_FILE_SUFFIXES
            ):
                found[str(p)] = p
    for raw in extra:
        p = Path(raw)
        if p.is_file() and p.suffix in DEBUG_FILE_SUFFIXES:
            found[str(p)] = p
    return sorted(found.values(), key=lambda p: p.name)


def compose_final_notification(
    *,
    error_message: str = "",
    info_message: str = "",
    webdav_message: str = "",
    debug_message: str = "",
) -> str:
    """错误优先，其次是结果提示；附加上传状态，段落以 --- 分隔。"""
    head = error_message or info_message
    parts = [p for p in (head, webdav_message, debug_message) if p]
    return "\n\n---\n".join(parts)


def build_debug_upload_message(uploaded: list[str]) -> str:
    if not uploaded:
        return ""
    lines = [f"📁 增强调试文件: `{name}`" for name in uploaded]
    return f"🔍 **调试文件已上传** ({len(uploaded)} 个文件)\n" + "\n".join(lines)
