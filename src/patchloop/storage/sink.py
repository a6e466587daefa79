"""Trace sinks: where sessions record their attempts.

A sink is the only object several concurrent sessions may share and
write to. Both implementations serialize record() with a lock, so each
attempt is stored whole and none are lost.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import Engine, distinct, select

from patchloop.storage.engine import create_session_factory, create_trace_engine, init_db
from patchloop.storage.schema import AttemptRow

if TYPE_CHECKING:
    from patchloop.models.attempt import RefinementAttempt

logger = logging.getLogger(__name__)


@runtime_checkable
class TraceSink(Protocol):
    """Receives every attempt a session records."""

    def record(self, session_id: str, attempt: RefinementAttempt) -> None:
        ...


class MemoryTraceSink:
    """In-process sink keeping ``(session_id, attempt)`` pairs in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[tuple[str, RefinementAttempt]] = []

    def record(self, session_id: str, attempt: RefinementAttempt) -> None:
        with self._lock:
            self._records.append((session_id, attempt))

    def records(self) -> list[tuple[str, RefinementAttempt]]:
        """Snapshot of everything recorded so far."""
        with self._lock:
            return list(self._records)

    def history(self, session_id: str) -> list[RefinementAttempt]:
        with self._lock:
            return [a for sid, a in self._records if sid == session_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SqlTraceSink:
    """SQLAlchemy-backed sink writing one ``refinement_attempts`` row per attempt.

    Usage::

        sink = SqlTraceSink.open("traces.db")
        session = RefinementSession(Target, generator, sink=sink)
        ...
        for row in sink.history(session.session_id):
            print(row["index"], row["status"])
    """

    def __init__(self, engine: Engine) -> None:
        init_db(engine)
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._lock = threading.Lock()

    @classmethod
    def open(cls, db_path: str = ":memory:", *, url: str | None = None) -> SqlTraceSink:
        return cls(create_trace_engine(db_path, url=url))

    def record(self, session_id: str, attempt: RefinementAttempt) -> None:
        data = attempt.to_dict()
        row = AttemptRow(
            session_id=session_id,
            attempt_index=data["index"],
            status=data["status"],
            generator=data["generator"],
            instruction_sent=data["instruction_sent"],
            raw_output=data["raw_output"],
            patch_received=data["patch_received"],
            operations_json=data["operations"],
            value_json=data["value_after_patch"],
            issues_json=data["issues"],
            warnings_json=data["warnings"],
            skipped_json=data["skipped_operations"],
            created_at=datetime.now(timezone.utc),
        )
        with self._lock, self._session_factory() as db:
            db.add(row)
            db.commit()
        logger.debug("Recorded attempt %d of session %s", data["index"], session_id[:8])

    def history(self, session_id: str) -> list[dict[str, Any]]:
        """Recorded attempts of one session, in attempt order."""
        stmt = (
            select(AttemptRow)
            .where(AttemptRow.session_id == session_id)
            .order_by(AttemptRow.attempt_index, AttemptRow.id)
        )
        with self._session_factory() as db:
            return [row.to_dict() for row in db.execute(stmt).scalars()]

    def sessions(self) -> list[str]:
        """Session ids with at least one recorded attempt, sorted."""
        stmt = select(distinct(AttemptRow.session_id)).order_by(AttemptRow.session_id)
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars())

    def close(self) -> None:
        self._engine.dispose()
