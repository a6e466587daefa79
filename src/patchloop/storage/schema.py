"""SQLAlchemy ORM schema for refinement traces.

One row per recorded RefinementAttempt. Structured members (patch
operations, issues, values) are stored as JSON in their RFC 6902 /
to_dict() forms so a trace can be replayed without patchloop types.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all patchloop ORM models."""

    pass


class AttemptRow(Base):
    """A recorded refinement attempt."""

    __tablename__ = "refinement_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    attempt_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    generator: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    instruction_sent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_output: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    patch_received: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    operations_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    value_json: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    issues_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    warnings_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    skipped_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_attempts_session_index", "session_id", "attempt_index"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Same shape as RefinementAttempt.to_dict(), plus session and time."""
        return {
            "session_id": self.session_id,
            "index": self.attempt_index,
            "status": self.status,
            "generator": self.generator,
            "instruction_sent": self.instruction_sent,
            "raw_output": self.raw_output,
            "patch_received": self.patch_received,
            "operations": self.operations_json,
            "value_after_patch": self.value_json,
            "issues": self.issues_json,
            "warnings": self.warnings_json,
            "skipped_operations": self.skipped_json,
            "created_at": self.created_at.isoformat(),
        }


class MetaRow(Base):
    """Key-value metadata for the trace database itself (e.g., schema version)."""

    __tablename__ = "_patchloop_meta"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
