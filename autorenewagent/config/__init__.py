"""
Configuration module for loading renewal settings and credentials.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import yaml


# Config directory path
CONFIG_DIR = Path(__file__).parent
PACKAGE_DIR = CONFIG_DIR.parent
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "config.yaml"

DEFAULT_SETTINGS: dict[str, Any] = {
    "site": {
        "login_url": "https://secure.xserver.ne.jp/xapanel/login/xserver/",
        "panel_url": "https://secure.xserver.ne.jp/xapanel/xvps/index",
        "login_button_text": "ログインする",
        "contract_menu_selector": ".contract__menuIcon",
        "contract_info_text": "契約情報",
        "update_text": "更新する",
        "continue_free_text": "引き続き無料VPSの利用を継続する",
        "renew_button_text": "無料VPSの利用を継続する",
        "captcha_placeholder": "上の画像的数字を入力",
        "expiry_label": "利用期限",
    },
    "browser": {
        "headless": True,
        "executable_path": None,
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
        ),
        "viewport": {"width": 1280, "height": 720},
        "record_video_dir": "storage/recordings",
        "slow_mo": 0,
    },
    "challenge": {
        "max_attempts": 5,
        "click_settle_ms": 3000,
        "frame_settle_ms": 2000,
        "frame_selector_timeout_ms": 3000,
        "optimistic_after_attempt": 3,
    },
    "captcha": {
        "max_tries": 3,
        "image_lookup_rounds": 3,
    },
    "recognition": {
        "endpoint": "https://captcha-120546510085.asia-northeast1.run.app",
        "timeout_seconds": 20.0,
        "min_length": 4,
    },
    "submit": {
        "max_retries": 3,
        "navigation_timeout_ms": 30000,
    },
    "recovery": {
        "reload_timeout_ms": 15000,
        "navigation_timeout_ms": 10000,
    },
    "debug": {
        "output_dir": "storage/debug",
    },
    "storage": {
        "expiry_file": "expire.txt",
    },
}


_settings_cache: Optional[dict] = None


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_path() -> Path:
    raw = os.getenv("AUTORENEW_CONFIG")
    if raw:
        return Path(raw).expanduser()
    return DEFAULT_CONFIG_PATH


def load_settings(force_reload: bool = False) -> dict:
    """
    Load settings from YAML file, merged over DEFAULT_SETTINGS.
    Caches the result for performance.

    Returns:
        dict: Effective settings
    """
    global _settings_cache

    if _settings_cache is not None and not force_reload:
        return _settings_cache

    config_path = get_config_path()
    loaded: dict = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except Exception as e:
            print(f"❌ Failed to load settings: {e}")
            loaded = {}
    else:
        print(f"⚠️ Settings file not found, using defaults: {config_path}")

    _settings_cache = _deep_merge(DEFAULT_SETTINGS, loaded)
    return _settings_cache


def get_setting(path: str, default: Any = None, settings: Optional[dict] = None) -> Any:
    """
    Read a dotted key such as ``"captcha.max_tries"``.
    """
    node: Any = settings if settings is not None else load_settings()
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node if node is not None else default


def get_credentials() -> tuple[str, str]:
    """
    Get login credentials from the environment.

    Returns:
        tuple[str, str]: (email, password), empty strings when unset
    """
    return os.getenv("EMAIL", ""), os.getenv("PASSWORD", "")


def get_proxy_server() -> Optional[dict]:
    """
    Split PROXY_SERVER into a Playwright proxy dict.

    Credentials are moved out of the URL into ``username``/``password``.
    """
    raw = (os.getenv("PROXY_SERVER") or "").strip()
    if not raw:
        return None
    parsed = urlsplit(raw)
    host = parsed.hostname or ""
    netloc = f"{host}:{parsed.port}" if parsed.port else host
    server = urlunsplit((parsed.scheme or "http", netloc, "", "", "")).rstrip("/")
    proxy: dict[str, str] = {"server": server}
    if parsed.username and parsed.password:
        proxy["username"] = parsed.username
        proxy["password"] = parsed.password
    return proxy


def get_telegram_config() -> tuple[str, str]:
    return os.getenv("TG_BOT_TOKEN", ""), os.getenv("TG_CHAT_ID", "")


def get_webdav_config() -> dict[str, str]:
    return {
        "url": os.getenv("WEBDAV_URL", ""),
        "username": os.getenv("WEBDAV_USERNAME", ""),
        "password": os.getenv("WEBDAV_PASSWORD", ""),
        "save_path": os.getenv("WEBDAV_SAVE_PATH", ""),
    }
