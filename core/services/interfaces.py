"""Core service interfaces and shared data structures.

This module defines the collaborator protocols the core calls into
(persistence and file download), the dataclasses describing download
requests and batch results, and the exceptions shared across layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

CONFLICT_UNIQUIFY = "uniquify"
CONFLICT_OVERWRITE = "overwrite"


class StorageError(RuntimeError):
    """Persistence read/write failed; the calling operation must abort."""


class DownloadBusyError(RuntimeError):
    """A download batch is already running on this executor."""


@dataclass
class DownloadRequest:
    """Arguments for one call to the download capability.

    Attributes:
        url: Source URL.
        full_path: Relative target path, `directory/filename`.
        conflict_action: `"uniquify"` or `"overwrite"`.
    """

    url: str
    full_path: str
    conflict_action: str = CONFLICT_UNIQUIFY


@dataclass
class DownloadFailure:
    """A failed download and its reason."""

    url: str
    error: str


@dataclass
class DownloadSummary:
    """Outcome of a download batch.

    Attributes:
        completed: Number of successful download calls.
        failed: Number of failed download calls.
        errors: One entry per failure, in settle order.
        skipped: Entries never issued because the batch was cancelled.
        cancelled: Whether the batch was cancelled before exhausting the plan.
    """

    completed: int = 0
    failed: int = 0
    errors: list[DownloadFailure] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False

    @property
    def failed_urls(self) -> list[str]:
        return [e.url for e in self.errors]


@dataclass
class DownloadProgress:
    """Snapshot of the running (or last) batch."""

    completed: int
    failed: int
    total: int
    is_downloading: bool

    @property
    def done(self) -> int:
        return self.completed + self.failed

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.done / self.total * 100)

    @property
    def is_complete(self) -> bool:
        return self.done == self.total


class DownloadCapability(Protocol):
    """Issues a single file download; raises on failure."""

    async def request_download(self, request: DownloadRequest) -> Any:
        """Start the download and return an opaque download id."""
        ...


class StorageBackend(Protocol):
    """Asynchronous key-value persistence with last-write-wins per key."""

    async def get(self, key: str) -> Any:
        """Return the stored value or None when the key is absent."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Store `value` under `key`."""
        ...

    async def remove(self, key: str) -> None:
        """Delete `key`; absent keys are ignored."""
        ...
