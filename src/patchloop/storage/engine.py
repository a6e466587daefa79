"""SQLAlchemy engine setup for the trace database.

A trace database is written by every session sharing a SqlTraceSink,
possibly from several threads, so SQLite connections get WAL journaling
and a busy timeout.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from patchloop.exceptions import PatchloopError
from patchloop.storage.schema import Base, MetaRow

SCHEMA_VERSION = "1"
_VERSION_KEY = "schema_version"

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA synchronous=NORMAL",
)


def _on_sqlite_connect(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
    cursor = dbapi_conn.cursor()
    for pragma in _SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_trace_engine(
    db_path: str | Path = ":memory:",
    *,
    url: str | None = None,
) -> Engine:
    """Create the engine a SqlTraceSink writes through.

    Args:
        db_path: SQLite file, or ``":memory:"``. Ignored when *url* is given.
        url: Any SQLAlchemy URL, for traces kept outside SQLite.

    An in-memory database is pinned to one connection shared across
    threads; otherwise every pooled connection would see its own empty
    database.
    """
    if url is not None:
        engine = create_engine(url)
    elif str(db_path) == ":memory:":
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(f"sqlite:///{Path(db_path)}")

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _on_sqlite_connect)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Rows are read after commit when serializing history.
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> str:
    """Create the trace tables and stamp or check the schema version.

    Returns:
        The schema version stored in the database.

    Raises:
        PatchloopError: If the database was written by an incompatible
            schema version.
    """
    Base.metadata.create_all(engine)
    with create_session_factory(engine)() as session:
        row = session.execute(
            select(MetaRow).where(MetaRow.key == _VERSION_KEY)
        ).scalar_one_or_none()
        if row is None:
            session.add(MetaRow(key=_VERSION_KEY, value=SCHEMA_VERSION))
            session.commit()
            return SCHEMA_VERSION
        if row.value != SCHEMA_VERSION:
            raise PatchloopError(
                f"Trace database schema version {row.value!r} is not supported "
                f"(expected {SCHEMA_VERSION!r})"
            )
        return row.value
