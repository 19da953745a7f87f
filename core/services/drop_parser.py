"""Parsing of external drops (files, HTML, URI lists, plain text) into images.

Best-effort by nature: anything that cannot be read is skipped, and a
completely unreadable drop yields no items.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from urllib.parse import parse_qs, quote, unquote

from bs4 import BeautifulSoup
from loguru import logger

from core.models import ImageItem, ImageSource
from core.services.url_service import get_extension_from_url, parse_url

MEDIA_IMAGE = "image"
MEDIA_VIDEO = "video"
MEDIA_UNKNOWN = "unknown"

SOURCE_FILE = "file"
SOURCE_HTML_IMG = "html-img"
SOURCE_HTML_SVG = "html-svg"
SOURCE_URI_LIST = "uri-list"
SOURCE_TEXT_URL = "text-url"
SOURCE_EMBEDDED = "embedded"

HINT_PRIMARY = "primary"
HINT_UI_ELEMENT = "ui-element"
HINT_UNKNOWN = "unknown"

DROP_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".ico", ".avif")
VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".avi", ".mkv")
UI_URL_PATTERNS = (
    "/icon",
    "/logo",
    "/button",
    "/arrow",
    "/check",
    "/close",
    "/menu",
    "/nav",
    "favicon",
)
EMBEDDED_URL_PARAMS = ("iai", "imgurl", "mediaurl", "url", "src", "image", "img", "orig")
UI_ELEMENT_MAX_SIDE = 32

_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_TEXT_URL_RE = re.compile(r"https?://\S+")
_LAST_EXT_RE = re.compile(r"\.\w+$")


@dataclass
class DroppedFile:
    """A file carried by a drop, already exposed under a URL (blob/file)."""

    name: str
    mime_type: str
    url: str


@dataclass
class DropData:
    """Raw payloads of a drop event, one field per transfer type."""

    files: list[DroppedFile] = field(default_factory=list)
    html: str = ""
    uri_list: str = ""
    text: str = ""


@dataclass
class ParsedDropItem:
    url: str
    source: str
    media_type: str
    format: str
    filename: str
    width: int | None = None
    height: int | None = None
    hint: str = HINT_UNKNOWN
    dedupe_key: str = ""


@dataclass
class ParsedDrop:
    items: list[ParsedDropItem] = field(default_factory=list)
    recommended: list[ParsedDropItem] = field(default_factory=list)


def is_absolute_url(url: str) -> bool:
    return bool(_ABSOLUTE_URL_RE.match(url or ""))


def detect_media_type(url: str) -> str:
    lowered = (url or "").lower()
    if not lowered:
        return MEDIA_UNKNOWN
    if lowered.startswith("data:image/") or any(e in lowered for e in DROP_IMAGE_EXTENSIONS):
        return MEDIA_IMAGE
    if any(e in lowered for e in VIDEO_EXTENSIONS):
        return MEDIA_VIDEO
    return MEDIA_UNKNOWN


def extract_format(url: str) -> str:
    """Image format without the dot, e.g. `png`; '' when unknown."""
    return get_extension_from_url(url).lstrip(".")


def suggest_filename(url: str) -> str:
    parts = parse_url(url)
    if parts is not None:
        name = _LAST_EXT_RE.sub("", unquote(parts.path).split("/")[-1])
        if 0 < len(name) < 200:
            return name
    return "image"


def dedupe_key(url: str) -> str:
    """Host plus path, so the same image under different queries matches."""
    parts = parse_url(url)
    if parts is None:
        return url
    return (parts.hostname or "") + parts.path


def is_likely_ui_element(url: str, width: int | None = None, height: int | None = None) -> bool:
    if width and height and width <= UI_ELEMENT_MAX_SIDE and height <= UI_ELEMENT_MAX_SIDE:
        return True
    lowered = url.lower()
    return any(p in lowered for p in UI_URL_PATTERNS)


def svg_to_data_url(svg_markup: str) -> str:
    return "data:image/svg+xml," + quote(svg_markup, safe="")


def extract_embedded_url(url: str) -> str | None:
    """Pull the real image URL out of search-engine result links."""
    parts = parse_url(url)
    if parts is None:
        return None
    query = parse_qs(parts.query)
    for key in EMBEDDED_URL_PARAMS:
        for value in query.get(key, []):
            if is_absolute_url(value):
                return value
    return None


def _int_attr(value: object) -> int | None:
    try:
        return int(str(value)) or None
    except (TypeError, ValueError):
        return None


def _svg_dimensions(view_box: str | None) -> tuple[int | None, int | None]:
    if not view_box:
        return None, None
    parts = view_box.split()
    if len(parts) < 4:
        return None, None
    try:
        return int(float(parts[2])), int(float(parts[3]))
    except ValueError:
        return None, None


class _Collector:
    def __init__(self) -> None:
        self.items: list[ParsedDropItem] = []
        self._seen: set[str] = set()

    def add(self, item: ParsedDropItem) -> None:
        key = item.dedupe_key or item.url
        if key in self._seen:
            return
        self._seen.add(key)
        self.items.append(item)

    def add_url(self, url: str, source: str, hint: str = HINT_UNKNOWN) -> None:
        self.add(
            ParsedDropItem(
                url=url,
                source=source,
                media_type=detect_media_type(url),
                format=extract_format(url),
                filename=suggest_filename(url),
                hint=hint,
                dedupe_key=dedupe_key(url),
            )
        )


def _parse_html(html: str, collector: _Collector) -> None:
    soup = BeautifulSoup(html, "html.parser")
    for position, img in enumerate(soup.find_all("img")):
        src = img.get("src")
        if not src or not is_absolute_url(src):
            continue
        width = _int_attr(img.get("width"))
        height = _int_attr(img.get("height"))
        if is_likely_ui_element(src, width, height):
            hint = HINT_UI_ELEMENT
        else:
            hint = HINT_PRIMARY if position == 0 else HINT_UNKNOWN
        collector.add(
            ParsedDropItem(
                url=src,
                source=SOURCE_HTML_IMG,
                media_type=MEDIA_IMAGE,
                format=extract_format(src),
                filename=suggest_filename(src),
                width=width,
                height=height,
                hint=hint,
                dedupe_key=dedupe_key(src),
            )
        )

    for svg in soup.find_all("svg"):
        data_url = svg_to_data_url(str(svg))
        # html.parser lower-cases attribute names
        width, height = _svg_dimensions(svg.get("viewBox") or svg.get("viewbox"))
        ui_element = is_likely_ui_element(data_url, width, height)
        collector.add(
            ParsedDropItem(
                url=data_url,
                source=SOURCE_HTML_SVG,
                media_type=MEDIA_IMAGE,
                format="svg",
                filename="svg-image",
                width=width,
                height=height,
                hint=HINT_UI_ELEMENT if ui_element else HINT_UNKNOWN,
            )
        )


def parse_drop_data(data: DropData) -> ParsedDrop:
    """Extract candidate images from every payload of a drop."""
    collector = _Collector()

    for f in data.files:
        if not f.mime_type.startswith("image/"):
            continue
        name, _, ext = f.name.rpartition(".")
        if not name:
            name, ext = f.name, "jpg"
        collector.add(
            ParsedDropItem(
                url=f.url,
                source=SOURCE_FILE,
                media_type=MEDIA_IMAGE,
                format=ext.lower(),
                filename=name or "image",
                hint=HINT_PRIMARY,
            )
        )

    if data.html:
        try:
            _parse_html(data.html, collector)
        except (ValueError, TypeError) as ex:
            logger.debug("Drop HTML could not be parsed: {}", ex)

    for line in data.uri_list.splitlines():
        url = line.strip()
        if not url or url.startswith("#") or not is_absolute_url(url):
            continue
        collector.add_url(url, SOURCE_URI_LIST)
        embedded = extract_embedded_url(url)
        if embedded and embedded != url:
            collector.add_url(embedded, SOURCE_EMBEDDED, HINT_PRIMARY)

    if data.text:
        match = _TEXT_URL_RE.search(data.text)
        if match:
            collector.add_url(match.group(0), SOURCE_TEXT_URL)

    recommended = [
        i for i in collector.items if i.media_type == MEDIA_IMAGE and i.hint != HINT_UI_ELEMENT
    ]
    return ParsedDrop(items=collector.items, recommended=recommended)


def to_image_items(items: list[ParsedDropItem]) -> list[ImageItem]:
    """Convert image-typed parsed items into collection items."""
    result: list[ImageItem] = []
    for i in items:
        if i.media_type != MEDIA_IMAGE or not i.url:
            continue
        result.append(
            ImageItem(
                url=i.url,
                filename=i.filename or "image",
                extension=f".{i.format}" if i.format else ".jpg",
                width=i.width,
                height=i.height,
                source=(
                    ImageSource.FILE_DROP if i.source == SOURCE_FILE else ImageSource.EXTERNAL_DROP
                ),
            )
        )
    return result
