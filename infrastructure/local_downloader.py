"""Download capability writing `data:` and `file://` sources under a root directory.

Remote schemes need a browser or network client and are rejected per item,
which the executor records as an ordinary failure.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import os
from pathlib import Path
import shutil
from urllib.parse import unquote, unquote_to_bytes, urlsplit

from loguru import logger

from core.services.filename_service import make_unique
from core.services.interfaces import CONFLICT_OVERWRITE, CONFLICT_UNIQUIFY, DownloadRequest


def decode_data_url(url: str) -> bytes:
    """Return the payload of a `data:` URL.

    Raises:
        ValueError: if the URL is not a well-formed data URL.
    """
    if not url.startswith("data:") or "," not in url:
        raise ValueError("not a data URL")
    header, _, payload = url[len("data:") :].partition(",")
    if header.lower().endswith(";base64"):
        try:
            return base64.b64decode(unquote(payload), validate=False)
        except (binascii.Error, ValueError) as ex:
            raise ValueError(f"invalid base64 payload: {ex}") from ex
    return unquote_to_bytes(payload)


class LocalFileDownloader:
    """Implements `request_download` by writing files below `root`."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()
        self._ids = itertools.count(1)

    @property
    def root(self) -> Path:
        return self._root

    def _target(self, full_path: str) -> Path:
        target = (self._root / full_path.replace("\\", "/")).resolve()
        if target != self._root and self._root not in target.parents:
            raise ValueError(f"target escapes download root: {full_path}")
        return target

    def _resolve_conflict(self, target: Path, conflict_action: str) -> Path:
        if conflict_action == CONFLICT_OVERWRITE or not target.exists():
            return target
        if conflict_action != CONFLICT_UNIQUIFY:
            raise ValueError(f"unknown conflict action: {conflict_action}")
        existing = [p.name for p in target.parent.iterdir()]
        return target.with_name(make_unique(target.name, existing))

    def _write(self, request: DownloadRequest) -> Path:
        parts = urlsplit(request.url)
        scheme = parts.scheme.lower()
        if scheme == "data":
            payload = decode_data_url(request.url)
            source = None
        elif scheme == "file":
            source = Path(unquote(parts.path))
            if not source.is_file():
                raise FileNotFoundError(f"source file not found: {source}")
            payload = b""
        else:
            raise ValueError(f"unsupported URL scheme: {scheme or '(none)'}")

        target = self._target(request.full_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target = self._resolve_conflict(target, request.conflict_action)
        if source is not None:
            shutil.copyfile(source, target)
        else:
            with open(target, "wb") as f:
                f.write(payload)
        return target

    async def request_download(self, request: DownloadRequest) -> int:
        """Write the file and return a download id.

        Raises:
            ValueError: unsupported scheme, bad payload or unsafe path.
            OSError: the source could not be read or the target written.
        """
        target = await asyncio.to_thread(self._write, request)
        download_id = next(self._ids)
        logger.debug("Saved {} ({} bytes)", target, os.path.getsize(target))
        return download_id
