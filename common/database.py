"""Engine, session factory and declarative base shared by every module."""
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

settings = get_settings()

# Connection execution option marking a transaction that never writes.
READ_ONLY = "courtbook_read_only"


class Base(DeclarativeBase):
    pass


def _enable_sqlite_write_lock(sqlite_engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, so two transactions could
    # both read "no conflict" before either writes. Writers take the write
    # lock up front; readers use WAL snapshots and never wait for a writer.
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(sqlite_engine, "begin")
    def _begin(connection):  # type: ignore[no-untyped-def]
        if connection.get_execution_options().get(READ_ONLY):
            connection.exec_driver_sql("BEGIN")
        else:
            connection.exec_driver_sql("BEGIN IMMEDIATE")


def _use_wal(sqlite_engine: Engine) -> None:
    # Persistent per database file; cannot be switched inside a transaction.
    raw = sqlite_engine.raw_connection()
    try:
        raw.cursor().execute("PRAGMA journal_mode=WAL")
    finally:
        raw.close()


def build_engine(database_url: str) -> Engine:
    """Create an engine, wiring SQLite so write transactions serialize."""

    if database_url.startswith("sqlite"):
        new_engine = create_engine(
            database_url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False, "timeout": settings.sqlite_busy_timeout},
        )
        _enable_sqlite_write_lock(new_engine)
        if ":memory:" not in database_url:
            _use_wal(new_engine)
        return new_engine
    return create_engine(database_url, echo=settings.database_echo, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def read_only_session(session_factory: sessionmaker = SessionLocal) -> Session:
    """Open a session whose transaction only reads.

    On SQLite it starts with a deferred ``BEGIN`` instead of taking the write
    lock; elsewhere the option is ignored.
    """
    session = session_factory(expire_on_commit=False)
    try:
        session.connection(execution_options={READ_ONLY: True})
    except Exception:
        session.close()
        raise
    return session


def get_db() -> Generator[Session, None, None]:
    db = read_only_session()
    try:
        yield db
    finally:
        db.close()
