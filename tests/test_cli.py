"""CLI tests for patchloop -- tests all 3 commands via Click's CliRunner.

Each test uses runner.isolated_filesystem() so schema, input and
database files never leak between tests.
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from patchloop.cli import cli
from patchloop.exceptions import BudgetExhaustedError
from patchloop.models.config import RefinementConfig
from patchloop.models.schema import json_schema_for
from patchloop.session import RefinementSession
from patchloop.storage.sink import SqlTraceSink
from tests.conftest import ScriptedGenerator, patch_text
from tests.schemas import ForecastConfig, flattened_mstl


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    """Create a Click test runner."""
    return CliRunner()


def _write_json(path: str, data) -> None:
    with open(path, "w") as f:
        json.dump(data, f)


def _record_sessions(db_path: str) -> None:
    """Record one successful and one exhausted session into *db_path*."""
    sink = SqlTraceSink.open(db_path)
    bad = json.dumps({"model": "Auto", "horizon": "soon"})
    fix = patch_text({"op": "replace", "path": "/horizon", "value": 6})

    gen = ScriptedGenerator(generations=[bad], patches=[fix])
    RefinementSession(ForecastConfig, gen, sink=sink, session_id="good-session").run("p")

    gen = ScriptedGenerator(generations=[bad])
    failing = RefinementSession(
        ForecastConfig,
        gen,
        sink=sink,
        config=RefinementConfig(max_retries=0),
        session_id="bad-session",
    )
    with pytest.raises(BudgetExhaustedError):
        failing.run("p")
    sink.close()


# ---------------------------------------------------------------------------
# normalize
# ---------------------------------------------------------------------------

class TestNormalizeCommand:
    def test_unflattens_with_json_schema_file(self, runner):
        with runner.isolated_filesystem():
            _write_json("schema.json", json_schema_for(ForecastConfig))
            _write_json("raw.json", flattened_mstl())
            result = runner.invoke(cli, ["normalize", "schema.json", "raw.json"])

        assert result.exit_code == 0, result.output
        assert '"Mstl": {' in result.output
        assert '"seasonalPeriods"' in result.output

    def test_module_reference_and_stdin(self, runner):
        raw = '```json\n{"model": "Auto", "calculation": null}\n```'
        result = runner.invoke(
            cli, ["normalize", "tests.schemas:ForecastConfig", "-"], input=raw
        )
        assert result.exit_code == 0, result.output
        assert '"model": "Auto"' in result.output
        assert "calculation" not in result.output

    def test_reports_dropped_fields(self, runner):
        with runner.isolated_filesystem():
            _write_json("schema.json", json_schema_for(ForecastConfig))
            _write_json("raw.json", {"model": "Auto", "period": 3})
            result = runner.invoke(cli, ["normalize", "schema.json", "raw.json"])

        assert result.exit_code == 0, result.output
        assert "Dropped 1 field(s)" in result.output
        assert "/model/period" in result.output

    def test_map_recovery_flag(self, runner):
        raw = json.dumps({"model": "Auto", "labels": [{"key": "a", "value": 1}]})
        args = ["normalize", "tests.schemas:ForecastConfig", "-"]

        recovered = runner.invoke(cli, args, input=raw)
        assert '"a": 1' in recovered.output

        kept = runner.invoke(cli, args + ["--no-map-recovery"], input=raw)
        assert '"key": "a"' in kept.output

    def test_unselectable_variant_fails(self, runner):
        raw = json.dumps({"shapes": [{"depth": 1}]})
        result = runner.invoke(cli, ["normalize", "tests.schemas:Drawing", "-"], input=raw)
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_invalid_json_fails(self, runner):
        result = runner.invoke(
            cli, ["normalize", "tests.schemas:ForecastConfig", "-"], input="nope"
        )
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_bad_schema_reference(self, runner):
        result = runner.invoke(cli, ["normalize", "no-such-schema", "-"], input="{}")
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# patch
# ---------------------------------------------------------------------------

class TestPatchCommand:
    OPS = [
        {"op": "replace", "path": "/age", "value": 30},
        {"op": "remove", "path": "/missing"},
    ]

    def test_partial_by_default(self, runner):
        with runner.isolated_filesystem():
            _write_json("base.json", {"name": "a", "age": 25})
            _write_json("patch.json", {"patch": self.OPS})
            result = runner.invoke(cli, ["patch", "base.json", "patch.json"])

        assert result.exit_code == 0, result.output
        assert '"age": 30' in result.output
        assert "Skipped 1 operation(s)" in result.output

    def test_atomic_rejects(self, runner):
        with runner.isolated_filesystem():
            _write_json("base.json", {"name": "a", "age": 25})
            _write_json("patch.json", self.OPS)
            result = runner.invoke(cli, ["patch", "base.json", "patch.json", "--atomic"])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_array_strategy(self, runner):
        with runner.isolated_filesystem():
            _write_json("base.json", {"a": [1, 2, 3]})
            _write_json(
                "patch.json",
                [{"op": "remove", "path": "/a/0"}, {"op": "remove", "path": "/a/1"}],
            )
            precise = runner.invoke(cli, ["patch", "base.json", "patch.json"])
            reordered = runner.invoke(
                cli, ["patch", "base.json", "patch.json", "--array-strategy", "reorder_removals"]
            )

        assert json.loads(precise.output) == {"a": [2]}
        assert json.loads(reordered.output) == {"a": [3]}

    def test_invalid_patch(self, runner):
        with runner.isolated_filesystem():
            _write_json("base.json", {})
            _write_json("patch.json", [{"op": "merge", "path": "/a"}])
            result = runner.invoke(cli, ["patch", "base.json", "patch.json"])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------

class TestHistoryCommand:
    def test_lists_sessions(self, runner):
        with runner.isolated_filesystem():
            _record_sessions("traces.db")
            result = runner.invoke(cli, ["history", "--db", "traces.db"])

        assert result.exit_code == 0, result.output
        assert "good-session" in result.output
        assert "bad-session" in result.output
        assert "valid" in result.output

    def test_session_attempts(self, runner):
        with runner.isolated_filesystem():
            _record_sessions("traces.db")
            result = runner.invoke(cli, ["history", "--db", "traces.db", "good-session"])

        assert result.exit_code == 0, result.output
        assert "invalid" in result.output
        assert "/horizon" in result.output

    def test_verbose(self, runner):
        with runner.isolated_filesystem():
            _record_sessions("traces.db")
            result = runner.invoke(
                cli, ["history", "--db", "traces.db", "good-session", "-v"]
            )

        assert result.exit_code == 0, result.output
        assert "attempt 1" in result.output
        assert "Issue:" in result.output
        assert "Patch:" in result.output

    def test_db_from_env(self, runner):
        with runner.isolated_filesystem():
            _record_sessions("traces.db")
            result = runner.invoke(cli, ["history"], env={"PATCHLOOP_DB": "traces.db"})
        assert "good-session" in result.output

    def test_missing_db(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["history", "--db", "nope.db"])
        assert result.exit_code == 1
        assert "Database not found" in result.output

    def test_unknown_session(self, runner):
        with runner.isolated_filesystem():
            _record_sessions("traces.db")
            result = runner.invoke(cli, ["history", "--db", "traces.db", "other"])
        assert result.exit_code == 1
        assert "No attempts recorded" in result.output
