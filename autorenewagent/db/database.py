from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase


DATABASE_URL = os.getenv("AUTORENEW_DATABASE_URL", "sqlite:///./autorenewagent/autorenewagent.db")


class Base(DeclarativeBase):
    """SQLAlchemy Base."""


engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
)

# 禁用 expire_on_commit，避免离开 Session 后对象属性失效导致 DetachedInstanceError
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
)


def init_db() -> None:
    """初始化数据库表结构。"""
    from ..models.renewal_run import RenewalRun  # noqa: F401
    from ..models.run_log import RunLog  # noqa: F401

    Base.metadata.create_all(bind=engine)
    _patch_runs_table_schema()


def _patch_runs_table_schema() -> None:
    """
    在无迁移框架下，幂等补齐 renewal_runs 表缺失字段。
    """
    required_columns: dict[str, str] = {
        "phase": "VARCHAR(32)",
        "next_renew_date": "VARCHAR(32)",
        "debug_artifacts": "TEXT",
    }
    try:
        with engine.begin() as conn:
            rows = conn.execute(text("PRAGMA table_info(renewal_runs)")).fetchall()
            existing = {str(row[1]) for row in rows}
            for col, ddl in required_columns.items():
                if col in existing:
                    continue
                conn.execute(text(f"ALTER TABLE renewal_runs ADD COLUMN {col} {ddl}"))
    except Exception:
        # schema patching is best-effort; table may not exist yet in tests/startup races
        return


@contextmanager
def get_session():
    """提供一个上下文管理的 Session，便于在业务代码中使用 with get_session()."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
