"""
命令行入口：python -m autorenewagent [--headless/--headed] [--serve]

默认执行一次续期并退出；--serve 启动控制 API。
"""

from __future__ import annotations

import argparse
import sys

from .config import load_settings
from .db.database import get_session, init_db
from .models.renewal_run import RenewalRun, RunStatus


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autorenewagent", description="免费 VPS 自动续期")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--headless", dest="headless", action="store_true", default=None)
    mode.add_argument("--headed", dest="headless", action="store_false")
    parser.add_argument("--serve", action="store_true", help="启动 FastAPI 控制服务")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    if args.headless is not None:
        # 覆盖缓存中的配置，后续 load_settings() 读到的是同一份字典
        settings.setdefault("browser", {})["headless"] = args.headless

    if args.serve:
        import uvicorn

        uvicorn.run("autorenewagent.app:app", host=args.host, port=args.port)
        return 0

    from .core.scheduler import RenewalScheduler

    init_db()
    with get_session() as session:
        session.add(RenewalRun(status=RunStatus.PENDING))

    result = RenewalScheduler().run_once()
    if result is None:
        return 1
    return 0 if result.status != RunStatus.FAILED else 1


if __name__ == "__main__":
    sys.exit(main())
