from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, declared_attr

from .config import settings


class Base(DeclarativeBase):
    @declared_attr.directive
    def __tablename__(cls) -> str:  # type: ignore[override]
        return cls.__name__.lower()


def enable_sqlite_pragmas(target: Engine, *, wal: bool = True) -> None:
    """Enforce foreign keys (and optionally WAL) on every new SQLite connection.

    Subscription children reference their parent through a self-referencing
    ``ON DELETE CASCADE`` key, which SQLite ignores unless ``foreign_keys`` is on.
    """

    @event.listens_for(target, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[override]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# SQLite 안정성 설정: FK enforce + WAL 모드
if settings.DATABASE_URL.startswith("sqlite"):
    enable_sqlite_pragmas(engine)
