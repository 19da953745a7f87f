"""Download audit log.

After a batch finishes, one CSV row per plan entry records where the file
was sent and whether the download call succeeded.
"""

from __future__ import annotations

from collections.abc import Sequence
import csv
from datetime import datetime
import os
from pathlib import Path

from loguru import logger

from core.models import DownloadPlanEntry
from core.services.interfaces import DownloadSummary
from infrastructure.logging import APP_DIR_NAME

LOG_HEADER = ["Directory", "Filename", "Url", "Success", "Reason"]
SKIPPED_REASON = "Skipped (cancelled)"


def get_download_log_directory() -> str:
    return str(Path.home() / ".local" / "share" / APP_DIR_NAME / "download_logs")


def build_log_rows(
    plan: Sequence[DownloadPlanEntry], summary: DownloadSummary
) -> list[list[str | int]]:
    """Rows for `plan` given the batch `summary`.

    Entries are admitted in plan order, so the last `summary.skipped` entries
    are the ones a cancelled batch never issued.
    """
    errors: dict[str, str] = {}
    for failure in summary.errors:
        errors.setdefault(failure.url, failure.error)
    issued = len(plan) - summary.skipped

    rows: list[list[str | int]] = []
    for position, entry in enumerate(plan):
        if position >= issued:
            rows.append([entry.directory, entry.filename, entry.url, 0, SKIPPED_REASON])
        elif entry.url in errors:
            rows.append([entry.directory, entry.filename, entry.url, 0, errors[entry.url]])
        else:
            rows.append([entry.directory, entry.filename, entry.url, 1, ""])
    return rows


def write_download_log(
    plan: Sequence[DownloadPlanEntry],
    summary: DownloadSummary,
    log_dir: str | None = None,
    now: datetime | None = None,
) -> str | None:
    """Write the audit CSV for one batch.

    Args:
        plan: The plan that was executed.
        summary: Result returned by the executor.
        log_dir: Target directory; defaults to `get_download_log_directory()`.
        now: Timestamp used in the file name.

    Returns:
        Path of the written log, or None when writing failed.
    """
    try:
        base_dir = os.path.expanduser(log_dir) if log_dir else get_download_log_directory()
        Path(base_dir).mkdir(parents=True, exist_ok=True)
        ts = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        log_path = os.path.join(base_dir, f"download_{ts}.csv")
        with open(log_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(LOG_HEADER)
            writer.writerows(build_log_rows(plan, summary))
        logger.info(
            "Download log written: {} ({} completed, {} failed)",
            log_path,
            summary.completed,
            summary.failed,
        )
        return log_path
    except (OSError, ValueError) as ex:
        logger.error("Write download log failed: {}", ex)
        return None
