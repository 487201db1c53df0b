from __future__ import annotations

import os
import tempfile
from datetime import datetime
from typing import Generator, Any

# 백그라운드 알람은 테스트에서 끈다 (settings import 전에 설정)
os.environ.setdefault("FINANCEIT_SCHEDULER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from financeit.core.database import Base, enable_sqlite_pragmas, get_db
from financeit.core.deps import get_notifier, get_scheduler
from financeit.main import app
from financeit import models
from financeit.services.notifications import ChangeNotifier
from financeit.services.scheduler import RecordingWakeAlarm, RecurrenceScheduler


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # 사용자 환경을 건드리지 않도록 임시 파일 SQLite 사용
    fd, path = tempfile.mkstemp(prefix="financeit_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False})
    enable_sqlite_pragmas(eng, wal=False)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="session")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        # 테이블 데이터 정리; 자식 행은 FK cascade로 함께 지워진다
        with engine.begin() as conn:
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())


@pytest.fixture()
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture()
def alarm() -> RecordingWakeAlarm:
    return RecordingWakeAlarm()


class FrozenClock:
    """Wall clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0))


@pytest.fixture()
def scheduler(session_factory, alarm, notifier, clock) -> RecurrenceScheduler:
    return RecurrenceScheduler(session_factory, alarm=alarm, notifier=notifier, arithmetic="fixed", clock=clock)


@pytest.fixture(autouse=True)
def override_dependency(db_session, scheduler, notifier):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_txn(db_session):
    """Insert a row directly, bypassing validation (used to plant bad data)."""

    def _make(**overrides) -> models.Transaction:
        data = {
            "amount": 12.5,
            "kind": "expense",
            "category": "Streaming",
            "description": "music",
            "timestamp": "01/01/2024 09:00",
            "account_ref": 1,
            "instrument_ref": None,
            "is_recurring": False,
            "interval_kind": None,
            "next_due": None,
        }
        data.update(overrides)
        txn = models.Transaction(**data)
        db_session.add(txn)
        db_session.commit()
        db_session.refresh(txn)
        return txn

    return _make
