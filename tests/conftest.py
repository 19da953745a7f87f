"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import pytest

from core.models import Collection, Group, ImageItem
from core.services.interfaces import DownloadRequest, StorageError


class FakeStorage:
    """In-memory storage backend.

    `fail_on` holds operations (`"set"`) or operation and key pairs (`"set:ungrouped"`)
    whose calls raise `StorageError`.
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = copy.deepcopy(data) if data else {}
        self.fail_on: set[str] = set()
        self.writes: list[str] = []

    def _check(self, op: str, key: str) -> None:
        if op in self.fail_on or f"{op}:{key}" in self.fail_on:
            raise StorageError(f"{op} {key} failed")

    async def get(self, key: str) -> Any:
        self._check("get", key)
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._check("set", key)
        self.writes.append(key)
        self.data[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._check("remove", key)
        self.data.pop(key, None)


class FakeDownloader:
    """Records requests; URLs in `failing` raise, others return an id."""

    def __init__(self, failing: set[str] | None = None, delay: float = 0.0) -> None:
        self.failing = failing or set()
        self.delay = delay
        self.requests: list[DownloadRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_request = None

    async def request_download(self, request: DownloadRequest) -> int:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if request.url in self.failing:
                raise RuntimeError(f"download interrupted: {request.url}")
            return len(self.requests)
        finally:
            self.in_flight -= 1


def make_image(url: str, filename: str = "photo", extension: str = ".jpg", **kwargs) -> ImageItem:
    return ImageItem(url=url, filename=filename, extension=extension, **kwargs)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def sample_collection() -> Collection:
    """Two groups plus two ungrouped images, all URLs distinct."""
    return Collection(
        ungrouped=[
            make_image("https://example.com/u1.png", "u1", ".png"),
            make_image("https://example.com/u2.png", "u2", ".png"),
        ],
        groups=[
            Group(
                id="g1",
                name="Travel",
                color="#1a73e8",
                images=[
                    make_image("https://example.com/a.jpg", "a"),
                    make_image("https://example.com/b.jpg", "b"),
                    make_image("https://example.com/c.jpg", "c"),
                ],
            ),
            Group(
                id="g2",
                name="Food",
                color="#ea4335",
                directory="Meals",
                images=[
                    make_image("https://example.com/x.jpg", "x"),
                    make_image("https://example.com/y.jpg", "y"),
                ],
            ),
        ],
    )
