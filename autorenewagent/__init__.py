"""
VPS Autorenew - Free VPS Renewal Agent

包初始化文件：导入时加载一次项目 .env。
"""

from __future__ import annotations

from dotenv import find_dotenv, load_dotenv

# EMAIL / PASSWORD / TG_* / WEBDAV_* 等凭据优先从已导出的环境变量读取
load_dotenv(find_dotenv(usecwd=True), override=False)

__version__ = "0.3.0"
