"""URL inspection helpers.

All functions are best-effort and never raise: malformed input yields an
empty string or False.
"""

from __future__ import annotations

import re
from urllib.parse import SplitResult, parse_qs, urlsplit

IMAGE_EXTENSIONS: tuple[str, ...] = (
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".webp",
    ".svg",
    ".bmp",
    ".ico",
    ".avif",
    ".tiff",
    ".tif",
)

FORMAT_QUERY_KEYS: tuple[str, ...] = ("format", "f", "type")

_DATA_IMAGE_RE = re.compile(r"^data:image/(\w+)", re.IGNORECASE)
_SEGMENT_EXT_RE = re.compile(r"\.(\w+)$")
_LOOSE_EXT_RE = re.compile(r"\.(\w+)(?:\?|$)")


def normalize_format(fmt: str) -> str:
    """Lower-case an image format name and map `jpeg` to `jpg`."""
    fmt = fmt.lower()
    return "jpg" if fmt == "jpeg" else fmt


def parse_url(url: str) -> SplitResult | None:
    """Split an absolute URL; None when it has no scheme or cannot be parsed."""
    if not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme:
        return None
    if parts.scheme in ("http", "https") and not parts.netloc:
        return None
    return parts


def query_format_hint(parts: SplitResult) -> str:
    """Return the first `format`/`f`/`type` query value, or ''."""
    try:
        query = parse_qs(parts.query)
    except ValueError:
        return ""
    for key in FORMAT_QUERY_KEYS:
        values = query.get(key)
        if values and values[0]:
            return values[0]
    return ""


def is_data_url(url: str | None) -> bool:
    return bool(url) and url.startswith("data:")


def is_blob_url(url: str | None) -> bool:
    return bool(url) and url.startswith("blob:")


def get_hostname(url: str) -> str:
    """Hostname of `url`, or '' when it cannot be parsed."""
    parts = parse_url(url)
    if parts is None:
        return ""
    return parts.hostname or ""


def get_pathname(url: str) -> str:
    parts = parse_url(url)
    if parts is None:
        return ""
    return parts.path


def get_extension_from_url(url: str) -> str:
    """Return the lower-case extension (with dot) implied by `url`, or ''.

    Data URLs use their MIME subtype (`.png` when unreadable). Other URLs use
    the last path segment, then a format query hint.
    """
    if not url:
        return ""

    if url.startswith("data:image/"):
        match = _DATA_IMAGE_RE.match(url)
        if match:
            return "." + normalize_format(match.group(1))
        return ".png"

    parts = parse_url(url)
    if parts is None:
        match = _LOOSE_EXT_RE.search(url)
        return "." + match.group(1).lower() if match else ""

    last_segment = parts.path.split("/")[-1]
    match = _SEGMENT_EXT_RE.search(last_segment)
    if match:
        return "." + match.group(1).lower()

    hint = query_format_hint(parts)
    if hint:
        return "." + normalize_format(hint)
    return ""


def is_image_url(url: str) -> bool:
    """Heuristic check whether `url` points at an image."""
    if not url:
        return False
    if url.startswith("data:image/"):
        return True

    parts = parse_url(url)
    if parts is None:
        lowered = url.lower()
        return any(ext in lowered for ext in IMAGE_EXTENSIONS)

    pathname = parts.path.lower()
    if pathname.endswith(IMAGE_EXTENSIONS):
        return True
    if any(marker in pathname for marker in ("/image", "/img", "/photo", "/media")):
        return True

    # CDNs often serve images from extension-less paths
    last_segment = pathname.split("/")[-1]
    return bool(last_segment) and "." not in last_segment
