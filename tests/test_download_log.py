from __future__ import annotations

import csv
from datetime import datetime

from core.models import DownloadPlanEntry
from core.services.interfaces import DownloadFailure, DownloadSummary
from infrastructure.download_log import (
    LOG_HEADER,
    SKIPPED_REASON,
    build_log_rows,
    write_download_log,
)

PLAN = [
    DownloadPlanEntry("Travel", "a.jpg", "u1"),
    DownloadPlanEntry("Travel", "b.jpg", "u2"),
    DownloadPlanEntry("", "c.jpg", "u3"),
]


def test_rows_mark_failures_and_skips():
    summary = DownloadSummary(
        completed=1, failed=1, errors=[DownloadFailure("u2", "boom")], skipped=1, cancelled=True
    )
    assert build_log_rows(PLAN, summary) == [
        ["Travel", "a.jpg", "u1", 1, ""],
        ["Travel", "b.jpg", "u2", 0, "boom"],
        ["", "c.jpg", "u3", 0, SKIPPED_REASON],
    ]


def test_write_download_log(tmp_path):
    summary = DownloadSummary(completed=3)
    path = write_download_log(PLAN, summary, str(tmp_path), now=datetime(2024, 5, 6, 7, 8, 9))
    assert path.endswith("download_20240506_070809.csv")
    with open(path, encoding="utf-8", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == LOG_HEADER
    assert rows[1] == ["Travel", "a.jpg", "u1", "1", ""]
    assert len(rows) == 4


def test_write_failure_returns_none(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    assert write_download_log(PLAN, DownloadSummary(), str(blocker / "sub")) is None
