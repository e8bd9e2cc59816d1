from __future__ import annotations

import copy
from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tests.fakes import FakeSession


@pytest.fixture()
def settings():
    """Effective settings without touching config.yaml on disk."""
    from autorenewagent.config import DEFAULT_SETTINGS

    return copy.deepcopy(DEFAULT_SETTINGS)


@pytest.fixture()
def fake_session():
    return FakeSession()


@pytest.fixture()
def isolated_db(monkeypatch, tmp_path):
    """
    Create an isolated sqlite database for API/scheduler integration tests.
    """
    from autorenewagent import app as app_module
    from autorenewagent.core import renewer as renewer_module
    from autorenewagent.core import scheduler as scheduler_module
    from autorenewagent.db import database as db_module
    from autorenewagent.db.database import Base
    from autorenewagent.models.renewal_run import RenewalRun  # noqa: F401
    from autorenewagent.models.run_log import RunLog  # noqa: F401

    db_file = tmp_path / "test_autorenewagent.db"
    test_engine = create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine,
        expire_on_commit=False,
    )

    @contextmanager
    def testing_get_session():
        s = TestingSessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    # patch db module symbols
    monkeypatch.setattr(db_module, "engine", test_engine, raising=True)
    monkeypatch.setattr(db_module, "SessionLocal", TestingSessionLocal, raising=True)
    monkeypatch.setattr(db_module, "get_session", testing_get_session, raising=True)

    # patch modules that imported these symbols directly
    monkeypatch.setattr(app_module, "get_session", testing_get_session, raising=True)
    monkeypatch.setattr(scheduler_module, "get_session", testing_get_session, raising=True)
    monkeypatch.setattr(renewer_module, "SessionLocal", TestingSessionLocal, raising=True)

    # create tables after patching engine/session factory
    Base.metadata.create_all(bind=test_engine)
    return TestingSessionLocal
