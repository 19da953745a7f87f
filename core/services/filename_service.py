"""Filename template engine and filename utilities.

`apply_template` expands user templates such as `{group}_{name}_{index}` into
filesystem-safe filenames. Date/time tokens read a single clock value so that
every file in a batch shares the same timestamp. Nothing here raises on bad
input; missing or malformed context falls back to defaults.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
import re
from typing import Any
from urllib.parse import unquote

from core.services.url_service import (
    IMAGE_EXTENSIONS,
    normalize_format,
    parse_url,
    query_format_hint,
)

DEFAULT_NAME = "image"
DEFAULT_EXTENSION = ".jpg"
DEFAULT_INDEX = 1
DEFAULT_GROUP = "Ungrouped"

# User-facing token table; keep in sync with the settings help text.
TEMPLATE_TOKENS: tuple[str, ...] = (
    "{name}",
    "{index}",
    "{group}",
    "{date}",
    "{time}",
    "{YYYY}",
    "{YY}",
    "{MM}",
    "{M}",
    "{MMMM}",
    "{MMM}",
    "{DD}",
    "{D}",
    "{dddd}",
    "{ddd}",
    "{hh}",
    "{h}",
    "{mm}",
    "{m}",
    "{ss}",
    "{s}",
    "{iso}",
    "{original}",
)

FORBIDDEN_CHARS_PATTERN = re.compile(r'[<>:"/\\|?*]')
_TOKEN_PATTERN = re.compile(r"\{([A-Za-z]+)\}")
_EXTENSION_PATTERN = re.compile(r"(\.[^.]+)$")
_SEGMENT_EXT_PATTERN = re.compile(r"\.(\w+)$")
_DATA_IMAGE_PATTERN = re.compile(r"^data:image/(\w+)", re.IGNORECASE)

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
# Indexed by datetime.weekday(), Monday first
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

GENERIC_TERMS = frozenset(
    {"image", "images", "img", "photo", "photos", "picture", "media", "assets", "static", "cdn"}
)
HOST_SKIP_PARTS = frozenset({"www", "cdn", "static", "images", "img", "media"})


@dataclass
class TemplateContext:
    """Per-item values for template expansion."""

    name: str = DEFAULT_NAME
    extension: str = DEFAULT_EXTENSION
    index: int = DEFAULT_INDEX
    group: str = DEFAULT_GROUP


def _coerce_context(ctx: TemplateContext | Mapping[str, Any] | None) -> TemplateContext:
    """Build a clean context, substituting defaults for missing or falsy fields."""
    if ctx is None:
        return TemplateContext()
    if isinstance(ctx, TemplateContext):
        raw: Mapping[str, Any] = vars(ctx)
    elif isinstance(ctx, Mapping):
        raw = ctx
    else:
        return TemplateContext()

    name = raw.get("name")
    extension = raw.get("extension")
    group = raw.get("group")
    try:
        index = int(raw.get("index"))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        index = DEFAULT_INDEX
    return TemplateContext(
        name=str(name) if name else DEFAULT_NAME,
        extension=str(extension) if extension else DEFAULT_EXTENSION,
        index=index or DEFAULT_INDEX,
        group=str(group) if group else DEFAULT_GROUP,
    )


def _date_tokens(now: datetime) -> dict[str, str]:
    month_long = MONTH_NAMES[now.month - 1]
    day_long = DAY_NAMES[now.weekday()]
    year4 = f"{now.year:04d}"
    return {
        "YYYY": year4,
        "YY": year4[-2:],
        "MM": f"{now.month:02d}",
        "M": str(now.month),
        "MMMM": month_long,
        "MMM": month_long[:3],
        "DD": f"{now.day:02d}",
        "D": str(now.day),
        "dddd": day_long,
        "ddd": day_long[:3],
        "hh": f"{now.hour:02d}",
        "h": str(now.hour),
        "mm": f"{now.minute:02d}",
        "m": str(now.minute),
        "ss": f"{now.second:02d}",
        "s": str(now.second),
    }


def sanitize_filename(value: str) -> str:
    """Replace characters that are invalid in filenames with `_`."""
    if not value:
        return ""
    return FORBIDDEN_CHARS_PATTERN.sub("_", value)


def apply_template(
    template: str,
    ctx: TemplateContext | Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> str:
    """Expand `template` for one item and append the extension.

    Core tokens (`{name}`, `{original}`, `{index}`, `{group}`) and the
    convenience tokens (`{date}`, `{time}`, `{iso}`) match case-insensitively;
    date part tokens are case-sensitive (`{MM}` is the month, `{mm}` minutes).
    Unknown tokens are left as written. The expanded name is sanitized; the
    extension is appended afterwards and is not sanitized.

    Args:
        template: Template text; empty or None yields just the extension.
        ctx: Item context (dataclass or mapping).
        now: Clock value for date tokens; defaults to the current local time.
    """
    context = _coerce_context(ctx)
    moment = now or datetime.now()
    date_parts = _date_tokens(moment)
    insensitive = {
        "name": context.name,
        "original": context.name,
        "index": str(context.index),
        "group": context.group,
        "date": f"{date_parts['YYYY']}-{date_parts['MM']}-{date_parts['DD']}",
        "time": f"{date_parts['hh']}-{date_parts['mm']}-{date_parts['ss']}",
        "iso": (
            f"{date_parts['YYYY']}{date_parts['MM']}{date_parts['DD']}"
            f"T{date_parts['hh']}{date_parts['mm']}{date_parts['ss']}"
        ),
    }

    def _replace(match: re.Match[str]) -> str:
        token = match.group(1)
        if token in date_parts:
            return date_parts[token]
        return insensitive.get(token.lower(), match.group(0))

    result = _TOKEN_PATTERN.sub(_replace, template if isinstance(template, str) else "")
    return sanitize_filename(result) + context.extension


def has_image_extension(filename: str) -> bool:
    if not filename:
        return False
    match = _EXTENSION_PATTERN.search(filename)
    return bool(match) and match.group(1).lower() in IMAGE_EXTENSIONS


def split_filename(filename: str) -> tuple[str, str]:
    """Split into `(name, extension)`.

    Only known image extensions are split off, so names with dots such as
    `Screenshot 2.29.30 AM.png` keep their inner periods.
    """
    if not filename:
        return "", ""
    match = _EXTENSION_PATTERN.search(filename)
    if match and match.group(1).lower() in IMAGE_EXTENSIONS:
        ext = match.group(1)
        return filename[: -len(ext)], ext
    return filename, ""


def split_filename_with_fallback(filename: str, fallback_extension: str) -> tuple[str, str]:
    """Like `split_filename`, using `fallback_extension` when none is recognized."""
    name, ext = split_filename(filename)
    if ext:
        return name, ext
    return filename, fallback_extension


def make_unique(filename: str, existing_names: Iterable[str]) -> str:
    """Append `_1`, `_2`, ... until `filename` is not in `existing_names`.

    Comparison is case-insensitive and should be done against the names of a
    single directory.
    """
    taken = {n.lower() for n in existing_names}
    if not taken or filename.lower() not in taken:
        return filename

    name, ext = split_filename(filename)
    counter = 1
    candidate = f"{name}_{counter}{ext}"
    while candidate.lower() in taken:
        counter += 1
        candidate = f"{name}_{counter}{ext}"
    return candidate


def _meaningful_stem(path: str, hostname: str) -> str:
    """Find a better stem than a generic last segment."""
    parents = [unquote(s) for s in path.split("/")[:-1] if s]
    for candidate in reversed(parents):
        if not candidate.isdigit() and candidate.lower() not in GENERIC_TERMS:
            return candidate
    for part in hostname.split("."):
        if part not in HOST_SKIP_PARTS and len(part) > 2:
            return f"{part}_image"
    return ""


def extract_name_and_extension(url: str) -> tuple[str, str]:
    """Derive `(name, extension)` for a source URL.

    Query and fragment are ignored; the last path segment is split at its
    final dot. `data:image/<fmt>` URLs take their extension from `<fmt>`.
    Generic or empty names are replaced by the nearest meaningful path
    segment or a hostname-derived stem, then by `image`; the extension
    defaults to `.jpg`.
    """
    name = ""
    extension = ""

    if url and url.startswith("data:image/"):
        match = _DATA_IMAGE_PATTERN.match(url)
        extension = "." + normalize_format(match.group(1)) if match else ".png"
    else:
        parts = parse_url(url or "")
        if parts is not None:
            last_segment = unquote(parts.path.split("/")[-1])
            match = _SEGMENT_EXT_PATTERN.search(last_segment)
            if match:
                extension = "." + match.group(1).lower()
                name = last_segment[: -len(extension)]
            else:
                name = last_segment
                hint = query_format_hint(parts)
                if hint:
                    extension = "." + normalize_format(hint)

            if not name or name.lower() in GENERIC_TERMS:
                name = _meaningful_stem(parts.path, parts.hostname or "") or name
        else:
            last_segment = (url or "").split("?")[0].split("#")[0].split("/")[-1]
            match = _SEGMENT_EXT_PATTERN.search(last_segment)
            if match:
                extension = "." + match.group(1).lower()
                name = last_segment[: -len(extension)]
            else:
                name = last_segment

    return name or DEFAULT_NAME, extension or DEFAULT_EXTENSION


def filename_from_url(url: str, existing_names: Iterable[str] | None = None) -> str:
    """Filename (with extension) for `url`, uniquified against `existing_names`."""
    name, extension = extract_name_and_extension(url)
    filename = sanitize_filename(name) + extension
    if existing_names:
        taken = {n.lower() for n in existing_names}
        counter = 1
        candidate = filename
        while candidate.lower() in taken:
            candidate = f"{sanitize_filename(name)}_{counter}{extension}"
            counter += 1
        filename = candidate
    return filename
