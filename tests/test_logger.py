"""Tests for the CSV execution log."""

from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import pytest

from foldwise.core.errors import LoggingError
from foldwise.core.logger import write_execution_log
from foldwise.core.models import RECORD_COLUMNS, ExecutionOutcome, ExecutionRecord


def _record(name, outcome=ExecutionOutcome.MOVED, kind=None):
    return ExecutionRecord(
        source=Path("/data") / name,
        destination=Path("/data/docs") / name,
        outcome=outcome,
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        error_kind=kind,
    )


class TestWriteExecutionLog:
    def test_writes_one_row_per_record(self, tmp_path):
        records = [_record("a.txt"), _record("b.txt", ExecutionOutcome.FAILED, "destination-exists")]

        path = write_execution_log(records, tmp_path)

        assert path.parent == tmp_path / ".foldwise" / "logs"
        assert path.name.startswith("execution_log_")
        df = pd.read_csv(path)
        assert list(df.columns) == RECORD_COLUMNS
        assert list(df["outcome"]) == ["moved", "failed"]
        assert df.loc[1, "error_kind"] == "destination-exists"
        assert df.loc[0, "timestamp"] == "2024-05-01T12:00:00+00:00"

    def test_empty_run_still_writes_header(self, tmp_path):
        path = write_execution_log([], tmp_path)

        assert list(pd.read_csv(path).columns) == RECORD_COLUMNS

    def test_runs_in_the_same_second_do_not_overwrite(self, tmp_path):
        first = write_execution_log([_record("a.txt")], tmp_path)
        second = write_execution_log([_record("b.txt")], tmp_path)

        assert first != second
        assert first.exists() and second.exists()

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / ".foldwise"
        blocker.write_text("not a directory")

        with pytest.raises(LoggingError):
            write_execution_log([_record("a.txt")], tmp_path)
