import os
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def db_url(sqlite_path: str) -> str:
    sqlite_path = (sqlite_path or "").strip() or "data/app.db"
    if sqlite_path == ":memory:":
        return "sqlite://"
    p = Path(sqlite_path)
    if not p.is_absolute():
        # относительные пути считаем от корня проекта, а не от CWD
        project_root = Path(__file__).resolve().parents[1]
        p = (project_root / p).resolve()
    os.makedirs(str(p.parent), exist_ok=True)
    return f"sqlite:///{p.as_posix()}"


def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    # WAL can fail on some filesystems (Docker bind mounts on Windows/WSL2)
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    except Exception:
        cursor.execute("PRAGMA journal_mode=DELETE")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_db_engine(sqlite_path: str) -> Engine:
    url = db_url(sqlite_path)
    kwargs = {}
    if url == "sqlite://":
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False}, **kwargs)
    event.listen(engine, "connect", _set_sqlite_pragma)
    return engine


def create_session_factory(sqlite_path: str, *, create_tables: bool = True) -> sessionmaker:
    engine = create_db_engine(sqlite_path)
    if create_tables:
        from . import models  # noqa: F401  (registers tables on Base.metadata)

        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)
