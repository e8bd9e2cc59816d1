"""
续期执行模块。

流程：
1. 登录面板，进入契约信息页读取当前到期日
2. 点击“更新する”进入续期确认，交给验证引擎处理 Turnstile / 图片验证码 / 恢复
3. 未到续期时间时只记录提示；否则最终提交并回到契约信息页复核到期日
4. 无论成败：关闭浏览器，上传录屏与调试文件，只发送一条汇总通知
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import get_credentials, get_setting, load_settings
from ..db.database import SessionLocal
from ..models.renewal_run import RunStatus
from ..models.run_log import RunLog
from .browser_manager import BrowserManager, LaunchedBrowser
from .debug_capture import DebugCapture
from .errors import RecoveryExhausted, RenewalError, SessionUnusable
from .expiry import (
    beijing_time_string,
    format_chinese_date,
    load_last_expiry,
    next_renew_available_date,
    parse_retry_after_date,
    read_expiration_date,
    save_expiry,
)
from .form_actions import FormActionExecutor
from .notifier import (
    build_debug_upload_message,
    collect_debug_artifacts,
    compose_final_notification,
    send_telegram_message,
    upload_to_webdav,
)
from .outcome_classifier import (
    build_error_report,
    build_not_due_message,
    build_success_message,
    build_unchanged_message,
    classify_renewal_outcome,
)
from .session import BrowserSession, LogFn, noop_log
from .verification import run_verification

LOGIN_EMAIL_SELECTOR = "#memberid"
LOGIN_PASSWORD_SELECTOR = "#user_password"
_BODY_TEXT_JS = "() => document.body ? document.body.innerText : ''"


@dataclass
class RenewResult:
    status: RunStatus
    phase: Optional[str] = None
    expiry_before: Optional[str] = None
    expiry_after: Optional[str] = None
    next_renew_date: Optional[str] = None
    info_message: Optional[str] = None
    error_message: Optional[str] = None
    artifacts: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (RunStatus.RENEWED, RunStatus.NOT_DUE)


def _site(key: str, settings: Optional[dict]) -> str:
    return str(get_setting(f"site.{key}", "", settings=settings))


def login(session: BrowserSession, *, settings: Optional[dict] = None, log_fn: Optional[LogFn] = None) -> None:
    log = log_fn or noop_log
    email, password = get_credentials()
    if not email or not password:
        raise RenewalError("EMAIL / PASSWORD 未设置，无法登录")
    log("Navigating and logging in...")
    session.navigate(_site("login_url", settings), wait_until="networkidle")
    session.fill(LOGIN_EMAIL_SELECTOR, email)
    session.fill(LOGIN_PASSWORD_SELECTOR, password)
    if not session.click_expecting_navigation(f"text={_site('login_button_text', settings)}"):
        log("⚠️ 登录后未检测到导航，继续执行", "warn")


def open_contract_info(
    session: BrowserSession,
    *,
    settings: Optional[dict] = None,
    log_fn: Optional[LogFn] = None,
    settle_ms: int = 5000,
) -> None:
    """面板 -> 合同菜单 -> 契約情報，等待表格出现。"""
    log = log_fn or noop_log
    log("Navigating to VPS panel...")
    session.navigate(_site("panel_url", settings), wait_until="networkidle")
    session.click(_site("contract_menu_selector", settings))
    session.click(f"text={_site('contract_info_text', settings)}")
    session.wait_for_navigation(wait_until="networkidle")
    if not session.wait_for_selector("th", timeout=10000):
        raise RenewalError("契约信息页未出现 th 表格，页面结构可能已变化")
    session.pause(settle_ms)


def open_renewal(session: BrowserSession, *, settings: Optional[dict] = None) -> None:
    session.click(f"text={_site('update_text', settings)}")
    session.pause(3000)
    session.click(f"text={_site('continue_free_text', settings)}")
    session.wait_for_navigation(wait_until="networkidle")


def final_submit(
    session: BrowserSession,
    *,
    settings: Optional[dict] = None,
    log_fn: Optional[LogFn] = None,
) -> bool:
    """增强提交；全部失败时点击续期按钮并等待导航作为备用方法。"""
    log = log_fn or noop_log
    executor = FormActionExecutor(settings=settings, log_fn=log)
    if executor.submit(session):
        log("最终续费步骤提交成功")
        return True
    log("⚠️ 最终续费步骤提交可能失败，尝试备用方法", "warn")
    try:
        session.click(executor.renew_selector)
        return session.wait_for_navigation(timeout=15000, wait_until="networkidle")
    except SessionUnusable:
        raise
    except Exception as exc:
        # 后续到期日复核决定成败
        log(f"⚠️ 备用续费方法也失败: {exc}", "warn")
        return False


def run_renewal_flow(
    session: BrowserSession,
    *,
    settings: Optional[dict] = None,
    log_fn: Optional[LogFn] = None,
    last_expiry: str = "",
    expiry_file: Optional[str] = None,
) -> RenewResult:
    """
    在已启动的会话上执行完整续期流程。

    Raises:
        RecoveryExhausted: 验证未通过且恢复失败
        SessionUnusable: 浏览器会话中途不可用
        RenewalError: 续期后无法定位到期日等流程性错误
    """
    log = log_fn or noop_log
    label = _site("expiry_label", settings) or "利用期限"

    login(session, settings=settings, log_fn=log)
    open_contract_info(session, settings=settings, log_fn=log)
    current_expiry = format_chinese_date(read_expiration_date(session, label, log_fn=log))
    log(f"当前到期日: {current_expiry}")

    log("Starting renewal process...")
    open_renewal(session, settings=settings)

    outcome = run_verification(session, settings, log_fn=log, raise_on_failure=True)

    if outcome.informational:
        body_text = str(session.evaluate(_BODY_TEXT_JS) or "")
        if not outcome.page_state.is_not_due:
            raise RenewalError(f"页面提示错误: {outcome.page_state.detail}")
        renew_available = parse_retry_after_date(body_text)
        message = build_not_due_message(
            renew_available_date=renew_available,
            current_expiry=current_expiry,
            time_str=beijing_time_string(),
        )
        log(message)
        return RenewResult(
            status=RunStatus.NOT_DUE,
            phase=outcome.phase,
            expiry_before=current_expiry,
            expiry_after=current_expiry,
            next_renew_date=renew_available or None,
            info_message=message,
            artifacts=outcome.artifacts,
        )

    log("Proceeding with the final renewal step...")
    final_submit(session, settings=settings, log_fn=log)
    log("Returned to panel after renewal.")

    open_contract_info(session, settings=settings, log_fn=log, settle_ms=3000)
    new_expiry_raw = read_expiration_date(session, label, log_fn=log)
    result = classify_renewal_outcome(
        previous_expiry=last_expiry, current_expiry=new_expiry_raw
    )
    if result.classification == "missing_expiry":
        raise RenewalError("无法找到 VPS 到期日。续期后未能定位到期日，脚本可能需要更新。")

    next_renew = next_renew_available_date(result.current_expiry)
    if result.classification == "renewed":
        message = build_success_message(
            new_expiry=result.current_expiry,
            next_renew_date=next_renew,
            time_str=beijing_time_string(),
        )
        log(message)
        if expiry_file:
            save_expiry(expiry_file, result.current_expiry)
        status = RunStatus.RENEWED
    else:
        message = build_unchanged_message(
            current_expiry=result.current_expiry, time_str=beijing_time_string()
        )
        log(message, "warn")
        status = RunStatus.UNCHANGED

    return RenewResult(
        status=status,
        phase=outcome.phase,
        expiry_before=current_expiry,
        expiry_after=result.current_expiry,
        next_renew_date=next_renew,
        info_message=message,
        artifacts=outcome.artifacts,
    )


def renew_vps(run_id: Optional[int] = None, *, manager: Optional[BrowserManager] = None) -> RenewResult:
    """
    一次完整续期执行：启动浏览器 -> 续期流程 -> 归档 -> 通知。

    异常不会向外抛出，统一转成 FAILED 结果与汇总错误报告。
    """
    log: LogFn = lambda msg, level="info": _log(run_id, msg, level)
    settings = load_settings()
    expiry_file = str(get_setting("storage.expiry_file", "expire.txt", settings=settings))
    last_expiry = load_last_expiry(expiry_file)
    debug = DebugCapture(get_setting("debug.output_dir", settings=settings), log_fn=log)

    _log(run_id, "=" * 50)
    _log(run_id, "🚀 开始 VPS 续期")
    _log(run_id, f"   上次记录的到期日: {last_expiry or '无'}")
    _log(run_id, "=" * 50)

    launched: Optional[LaunchedBrowser] = None
    video: Optional[str] = None
    try:
        launched = (manager or BrowserManager(log_fn=log, settings=settings)).launch()
        video = launched.video_path()
        result = run_renewal_flow(
            launched.session,
            settings=settings,
            log_fn=log,
            last_expiry=last_expiry,
            expiry_file=expiry_file,
        )
    except Exception as exc:
        _log(run_id, f"❌ 续期过程异常: {exc}", "error")
        result = _failure_result(exc, launched, debug, last_expiry)
    finally:
        if launched is not None:
            try:
                launched.close()
            except Exception as exc:
                _log(run_id, f"⚠️ 关闭浏览器失败: {exc}", "warn")

    result.artifacts = list(dict.fromkeys(result.artifacts + debug.artifacts))
    _archive_and_notify(result, video=video, debug_dir=debug.output_dir, log=log)
    return result


def _failure_result(
    exc: BaseException,
    launched: Optional[LaunchedBrowser],
    debug: DebugCapture,
    last_expiry: str,
) -> RenewResult:
    current_url = ""
    page_title = ""
    saved_page = None
    if launched is not None and not isinstance(exc, SessionUnusable):
        try:
            current_url = launched.session.url
            page_title = launched.session.title()
        except Exception:
            page_title = "unknown"
        saved_page = debug.save_html(launched.session, "error_page_state.html")
    report = build_error_report(
        exc,
        current_url=current_url,
        page_title=page_title,
        last_expiry=last_expiry,
        time_str=beijing_time_string(),
        saved_page=Path(saved_page).name if saved_page else None,
    )
    artifacts = list(exc.artifacts) if isinstance(exc, RecoveryExhausted) else []
    return RenewResult(
        status=RunStatus.FAILED,
        phase="failed",
        expiry_before=last_expiry or None,
        error_message=report,
        artifacts=artifacts,
    )


def _archive_and_notify(
    result: RenewResult, *, video: Optional[str], debug_dir: Path, log: LogFn
) -> None:
    stamp = beijing_time_string().replace(" ", "-").replace(":", "-")
    webdav_message = ""
    if video and Path(video).exists():
        webdav_message = upload_to_webdav(video, f"vps-renewal_{stamp}.webm", log_fn=log)

    uploaded: list[str] = []
    for path in collect_debug_artifacts(debug_dir, extra=result.artifacts):
        remote_name = f"enhanced_{path.stem}_{stamp}{path.suffix}"
        status = upload_to_webdav(path, remote_name, log_fn=log)
        if status.startswith("✅"):
            uploaded.append(remote_name)

    notification = compose_final_notification(
        error_message=result.error_message or "",
        info_message=result.info_message or "",
        webdav_message=webdav_message,
        debug_message=build_debug_upload_message(uploaded),
    )
    if notification:
        send_telegram_message(notification, log_fn=log)


def _log(run_id: Optional[int], message: str, level: str = "info") -> None:
    """写入日志"""
    if run_id is not None:
        with SessionLocal() as session:
            session.add(RunLog(run_id=run_id, level=level, message=message))
            session.commit()
    print(f"[run={run_id if run_id is not None else '-'}] [{level.upper()}] {message}")
