from __future__ import annotations

import base64
import json

import httpx

from autorenewagent.core.notifier import (
    build_debug_upload_message,
    collect_debug_artifacts,
    compose_final_notification,
    remote_path_for,
    send_telegram_message,
    upload_to_webdav,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_telegram_skipped_without_config(monkeypatch):
    monkeypatch.delenv("TG_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TG_CHAT_ID", raising=False)

    def handler(request):
        raise AssertionError("no request expected")

    assert send_telegram_message("hi", client=_client(handler)) is False


def test_telegram_sends_markdown(monkeypatch):
    monkeypatch.setenv("TG_BOT_TOKEN", "bot-token-1")
    monkeypatch.setenv("TG_CHAT_ID", "42")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    assert send_telegram_message("🎉 done", client=_client(handler)) is True
    assert seen["url"] == "https://api.telegram.org/botbot-token-1/sendMessage"
    assert seen["json"] == {"chat_id": "42", "text": "🎉 done", "parse_mode": "Markdown"}


def test_telegram_error_status_is_reported(monkeypatch):
    monkeypatch.setenv("TG_BOT_TOKEN", "bot-token-1")
    monkeypatch.setenv("TG_CHAT_ID", "42")
    logs = []
    client = _client(lambda request: httpx.Response(400, json={"ok": False}))
    assert (
        send_telegram_message("x", client=client, log_fn=lambda m, level="info": logs.append(level))
        is False
    )
    assert logs == ["error"]


def test_webdav_not_configured_returns_empty(monkeypatch, tmp_path):
    monkeypatch.delenv("WEBDAV_URL", raising=False)
    f = tmp_path / "recording.webm"
    f.write_bytes(b"video")
    assert upload_to_webdav(f, "vps-renewal.webm") == ""


def test_webdav_put_with_basic_auth(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBDAV_URL", "https://dav.example.test/remote.php/")
    monkeypatch.setenv("WEBDAV_USERNAME", "alice")
    monkeypatch.setenv("WEBDAV_PASSWORD", "secret")
    monkeypatch.setenv("WEBDAV_SAVE_PATH", "vps/")
    f = tmp_path / "recording.webm"
    f.write_bytes(b"video-bytes")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.content
        return httpx.Response(201)

    status = upload_to_webdav(f, "vps-renewal_1.webm", client=_client(handler))

    assert status == "✅ 录屏已成功上传到 WebDAV。\n路径: `vps/vps-renewal_1.webm`"
    assert seen["method"] == "PUT"
    assert seen["url"] == "https://dav.example.test/remote.php/vps/vps-renewal_1.webm"
    assert seen["auth"] == "Basic " + base64.b64encode(b"alice:secret").decode()
    assert seen["body"] == b"video-bytes"


def test_webdav_failure_becomes_status_text(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBDAV_URL", "https://dav.example.test")
    monkeypatch.setenv("WEBDAV_USERNAME", "alice")
    monkeypatch.setenv("WEBDAV_PASSWORD", "secret")
    monkeypatch.delenv("WEBDAV_SAVE_PATH", raising=False)
    f = tmp_path / "a.html"
    f.write_text("<html/>", encoding="utf-8")

    status = upload_to_webdav(f, "a.html", client=_client(lambda r: httpx.Response(507)))
    assert status.startswith("❌ WebDAV 上传失败:")


def test_remote_path_for():
    assert remote_path_for("a.webm", "") == "a.webm"
    assert remote_path_for("a.webm", "backups/vps/") == "backups/vps/a.webm"


def test_collect_debug_artifacts(tmp_path):
    (tmp_path / "turnstile_debug_frame_0_x.json").write_text("{}")
    (tmp_path / "turnstile_debug_frame_0_x.html").write_text("")
    (tmp_path / "debug_state_verification_failed_x.html").write_text("")
    (tmp_path / "debug_state_verification_failed_x.png").write_bytes(b"")
    (tmp_path / "notes.txt").write_text("")
    extra = tmp_path / "elsewhere"
    extra.mkdir()
    (extra / "error_page_state.html").write_text("")

    names = [p.name for p in collect_debug_artifacts(tmp_path, extra=[str(extra / "error_page_state.html")])]
    assert names == [
        "debug_state_verification_failed_x.html",
        "error_page_state.html",
        "turnstile_debug_frame_0_x.html",
        "turnstile_debug_frame_0_x.json",
    ]


def test_compose_final_notification_prefers_error():
    assert compose_final_notification(info_message="info", error_message="err") == "err"
    assert (
        compose_final_notification(info_message="info", webdav_message="dav", debug_message="dbg")
        == "info\n\n---\ndav\n\n---\ndbg"
    )
    assert compose_final_notification(webdav_message="dav") == "dav"
    assert compose_final_notification() == ""
    assert build_debug_upload_message([]) == ""
    assert build_debug_upload_message(["a.json"]).startswith("🔍 **调试文件已上传** (1 个文件)")
