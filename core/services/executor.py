"""Download execution over an injected download capability.

Each plan entry becomes one `request_download` call. A failed call is
recorded in the batch summary and never aborts the batch. Batch counters
belong to the executor instance, and a second batch cannot start while one
is running.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
import re

from loguru import logger

from core.models import DownloadPlanEntry
from core.services.interfaces import (
    CONFLICT_OVERWRITE,
    CONFLICT_UNIQUIFY,
    DownloadBusyError,
    DownloadCapability,
    DownloadFailure,
    DownloadProgress,
    DownloadRequest,
    DownloadSummary,
)

DEFAULT_CONCURRENCY = 5

ProgressCallback = Callable[[int, int, int], None]

_TRAILING_SEPARATORS = re.compile(r"[/\\]+$")


def build_file_path(directory: str, filename: str) -> str:
    """Join `directory` and `filename` with `/`, dropping trailing separators."""
    if not directory:
        return filename
    return _TRAILING_SEPARATORS.sub("", directory) + "/" + filename


def build_request(entry: DownloadPlanEntry) -> DownloadRequest:
    """Map a plan entry to a download call."""
    return DownloadRequest(
        url=entry.url,
        full_path=build_file_path(entry.directory, entry.filename),
        conflict_action=CONFLICT_UNIQUIFY if entry.will_rename else CONFLICT_OVERWRITE,
    )


class CancelToken:
    """Cooperative cancellation flag checked before each download is issued."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class _BatchState:
    completed: int = 0
    failed: int = 0
    total: int = 0
    errors: list[DownloadFailure] = field(default_factory=list)


class DownloadExecutor:
    """Runs download plans sequentially or with bounded parallelism."""

    def __init__(
        self, downloader: DownloadCapability, concurrency: int = DEFAULT_CONCURRENCY
    ) -> None:
        """Create an executor.

        Args:
            downloader: Object exposing async `request_download(request)`.
            concurrency: Default in-flight limit for `execute_parallel`.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._downloader = downloader
        self._concurrency = concurrency
        self._state = _BatchState()
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    def progress(self) -> DownloadProgress:
        """Counters of the running batch, or of the last finished one."""
        return DownloadProgress(
            completed=self._state.completed,
            failed=self._state.failed,
            total=self._state.total,
            is_downloading=self._busy,
        )

    async def execute_sequential(
        self,
        plan: Sequence[DownloadPlanEntry],
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> DownloadSummary:
        """Issue downloads one at a time in plan order."""
        self._begin(plan)
        issued = 0
        try:
            for entry in plan:
                if cancel is not None and cancel.cancelled:
                    break
                issued += 1
                self._record(entry, await self._download_one(entry), on_progress)
        finally:
            self._busy = False
        return self._summary(len(plan) - issued)

    async def execute_parallel(
        self,
        plan: Sequence[DownloadPlanEntry],
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> DownloadSummary:
        """Issue downloads with at most `concurrency` calls in flight.

        Entries are admitted in plan order; a new one is admitted whenever an
        in-flight call settles. Completion order is not preserved.
        """
        limit = self._concurrency if concurrency is None else concurrency
        if limit < 1:
            raise ValueError("concurrency must be at least 1")

        self._begin(plan)
        admitted = 0
        active: dict[asyncio.Task[str | None], DownloadPlanEntry] = {}
        try:
            while True:
                while len(active) < limit and admitted < len(plan):
                    if cancel is not None and cancel.cancelled:
                        break
                    entry = plan[admitted]
                    admitted += 1
                    active[asyncio.ensure_future(self._download_one(entry))] = entry
                if not active:
                    break
                done, _ = await asyncio.wait(active.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    self._record(active.pop(task), task.result(), on_progress)
        finally:
            for task in active:
                task.cancel()
            self._busy = False
        return self._summary(len(plan) - admitted)

    def _begin(self, plan: Sequence[DownloadPlanEntry]) -> None:
        if self._busy:
            raise DownloadBusyError("a download batch is already running")
        self._busy = True
        self._state = _BatchState(total=len(plan))
        logger.info("Download batch started: {} item(s)", len(plan))

    async def _download_one(self, entry: DownloadPlanEntry) -> str | None:
        """Return None on success, or the error text on failure."""
        request = build_request(entry)
        try:
            download_id = await self._downloader.request_download(request)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.warning("Download failed for {}: {}", entry.url, ex)
            return str(ex) or ex.__class__.__name__
        logger.debug("Download issued {} -> {} (id={})", entry.url, request.full_path, download_id)
        return None

    def _record(
        self, entry: DownloadPlanEntry, error: str | None, on_progress: ProgressCallback | None
    ) -> None:
        state = self._state
        if error is None:
            state.completed += 1
        else:
            state.failed += 1
            state.errors.append(DownloadFailure(url=entry.url, error=error))
        if on_progress is not None:
            try:
                on_progress(state.completed, state.failed, state.total)
            except Exception as ex:  # pylint: disable=broad-exception-caught
                logger.warning("Progress callback raised: {}", ex)

    def _summary(self, skipped: int) -> DownloadSummary:
        state = self._state
        summary = DownloadSummary(
            completed=state.completed,
            failed=state.failed,
            errors=list(state.errors),
            skipped=skipped,
            cancelled=skipped > 0,
        )
        logger.info(
            "Download batch finished: {} completed, {} failed, {} skipped",
            summary.completed,
            summary.failed,
            summary.skipped,
        )
        return summary
