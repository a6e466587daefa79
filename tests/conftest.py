"""Shared test fixtures for patchloop.

Provides an in-memory trace engine, sinks, and a scripted Generator
that replays canned responses and records every call.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from patchloop.storage.engine import create_trace_engine, init_db
from patchloop.storage.sink import MemoryTraceSink, SqlTraceSink


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_trace_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sql_sink(engine) -> SqlTraceSink:
    return SqlTraceSink(engine)


@pytest.fixture
def memory_sink() -> MemoryTraceSink:
    return MemoryTraceSink()


# ------------------------------------------------------------------
# Scripted generator (used by test_session.py, test_cli.py)
# ------------------------------------------------------------------


class ScriptedGenerator:
    """A Generator that replays canned responses in order.

    Each response is text, an exception instance to raise, or a
    zero-argument callable whose return value is the text. Calls are
    recorded as dicts with ``kind``, ``model``, ``text`` (prompt or
    problem) and ``value`` (current value for patch requests).
    """

    def __init__(
        self,
        generations: list[Any] | None = None,
        patches: list[Any] | None = None,
    ) -> None:
        self.generations = list(generations or [])
        self.patches = list(patches or [])
        self.calls: list[dict[str, Any]] = []

    def generate(self, prompt, schema, *, model=None) -> str:
        self.calls.append({"kind": "generate", "model": model, "text": prompt, "value": None})
        return self._next(self.generations)

    def generate_patch(self, current_value, schema, problem, *, model=None) -> str:
        self.calls.append(
            {"kind": "patch", "model": model, "text": problem, "value": current_value}
        )
        return self._next(self.patches)

    @property
    def models(self) -> list[str | None]:
        return [c["model"] for c in self.calls]

    @staticmethod
    def _next(queue: list[Any]) -> str:
        if not queue:
            raise AssertionError("ScriptedGenerator ran out of responses")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item()
        return item


def patch_text(*ops: dict) -> str:
    """Render operations as the ``{"patch": [...]}`` envelope."""
    return json.dumps({"patch": list(ops)})
