from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import get_setting
from .db.database import init_db, get_session
from .models.renewal_run import RenewalRun, RunStatus
from .models.run_log import RunLog
from .core.expiry import load_last_expiry
from .core.scheduler import scheduler

BASE_DIR = Path(__file__).resolve().parent


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 初始化数据库等资源
    init_db()
    yield
    scheduler.stop()


app = FastAPI(title="VPS Autorenew - Renewal Agent", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health():
    """服务与调度器状态。"""
    expiry_file = str(get_setting("storage.expiry_file", "expire.txt"))
    return {
        "ok": True,
        "version": __version__,
        "scheduler_running": scheduler.is_running,
        "last_known_expiry": load_last_expiry(expiry_file) or None,
    }


@app.get("/api/runs")
def list_runs(status: RunStatus | None = None):
    """
    列出续期执行记录（按创建时间倒序）。
    """
    with get_session() as session:
        query = session.query(RenewalRun)
        if status is not None:
            query = query.filter(RenewalRun.status == status)
        runs = query.order_by(RenewalRun.create_time.desc()).all()
        return [run.to_dict() for run in runs]


@app.post("/api/runs")
def create_run():
    """
    新建一次待执行的续期；已有 pending / in_progress 时不重复创建。
    """
    with get_session() as session:
        active = (
            session.query(RenewalRun)
            .filter(RenewalRun.status.in_([RunStatus.PENDING, RunStatus.IN_PROGRESS]))
            .first()
        )
        if active:
            return {
                "ok": False,
                "error": f"run {active.id} is already {active.status.value}",
            }
        run = RenewalRun(status=RunStatus.PENDING)
        session.add(run)
        session.flush()
        return {"ok": True, "run": run.to_dict()}


@app.get("/api/runs/{run_id}/logs")
def get_run_logs(run_id: int):
    """返回指定执行的步骤日志。"""
    with get_session() as session:
        logs = (
            session.query(RunLog)
            .filter(RunLog.run_id == run_id)
            .order_by(RunLog.create_time.asc(), RunLog.id.asc())
            .all()
        )
        return [log.to_dict() for log in logs]


@app.get("/api/runs/{run_id}/diagnostics")
def get_run_diagnostics(run_id: int):
    """返回执行的关键诊断信息（最近日志 + 调试文件列表及是否仍存在）。"""
    with get_session() as session:
        run = session.get(RenewalRun, run_id)
        if not run:
            return {"ok": False, "error": f"Run {run_id} not found"}
        logs = (
            session.query(RunLog)
            .filter(RunLog.run_id == run_id)
            .order_by(RunLog.create_time.desc(), RunLog.id.desc())
            .limit(40)
            .all()
        )
        log_summary = [log.to_dict() for log in reversed(logs)]
        run_info = run.to_dict()

    artifacts = [
        {"path": p, "exists": Path(p).exists()} for p in run_info["debug_artifacts"]
    ]
    errors = [log for log in log_summary if log["level"] == "error"]
    return {
        "ok": True,
        "run": run_info,
        "logs": log_summary,
        "errors": errors,
        "artifacts": artifacts,
    }


@app.post("/api/control/start")
def start_renewing():
    """
    启动续期调度
    """
    scheduler.start()
    return {"ok": True, "message": "scheduler started"}


@app.post("/api/control/pause")
def pause_renewing():
    """
    暂停续期调度
    """
    scheduler.stop()
    return {"ok": True, "message": "paused"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("autorenewagent.app:app", host="127.0.0.1", port=8000, reload=True)
