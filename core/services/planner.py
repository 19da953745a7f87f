"""Download planning: turns a collection snapshot into an ordered plan.

Groups are flattened in collection order, then the ungrouped images as their
own pseudo-group. Each image gets a directory and a templated (or custom)
filename, and the result runs through conflict detection. Planning is pure:
the same collection, settings and clock give an identical plan.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
import re

from loguru import logger

from core.models import (
    Collection,
    DownloadPlanEntry,
    Group,
    ImageItem,
    IndexScope,
    RenameAction,
    Settings,
)
from core.services.conflict_service import detect_conflicts
from core.services.filename_service import (
    DEFAULT_GROUP,
    TemplateContext,
    apply_template,
    make_unique,
    sanitize_filename,
)

DEFAULT_UNGROUPED_DIRECTORY = "Ungrouped"

_DIR_FORBIDDEN_PATTERN = re.compile(r'[<>:"|?*]')
_SLASH_RUN_PATTERN = re.compile(r"/+")


def sanitize_directory_path(path: str) -> str:
    """Normalize a relative directory path.

    Invalid characters become `_`, backslashes become `/`, repeated slashes
    collapse and leading/trailing slashes are stripped.
    """
    if not path:
        return ""
    cleaned = _DIR_FORBIDDEN_PATTERN.sub("_", path).replace("\\", "/")
    cleaned = _SLASH_RUN_PATTERN.sub("/", cleaned)
    return cleaned.strip("/")


def join_directory(base: str, directory: str) -> str:
    """Join the base download directory and a group directory."""
    base = sanitize_directory_path(base)
    directory = sanitize_directory_path(directory)
    if base and directory:
        return f"{base}/{directory}"
    return base or directory


class DownloadPlanner:
    """Builds download plans from a collection and user settings."""

    def build_plan(
        self,
        collection: Collection,
        settings: Settings,
        *,
        selected_urls: Iterable[str] | None = None,
        include_ungrouped: bool = True,
        index_scope: IndexScope = IndexScope.DIRECTORY,
        overrides: Mapping[str, RenameAction] | None = None,
        deduplicate: bool = False,
        now: datetime | None = None,
    ) -> list[DownloadPlanEntry]:
        """Produce the conflict-annotated plan.

        Args:
            collection: Collection snapshot to plan.
            settings: Provides base/ungrouped directories, template and the
                auto-rename default for conflicts.
            selected_urls: When given, only these images are planned and
                `{index}` numbering runs over the selected subset only.
            include_ungrouped: Whether ungrouped images are planned.
            index_scope: `DIRECTORY` numbers `{index}` per target directory;
                `BATCH` numbers across the whole plan.
            overrides: Explicit per-url rename policy.
            deduplicate: Give conflicting entries that will be renamed unique
                names within their directory via `make_unique`.
            now: Clock value shared by all date tokens in this plan.
        """
        moment = now or datetime.now()
        selection = set(selected_urls) if selected_urls is not None else None
        overrides = overrides or {}

        sources: list[tuple[Group | None, list[ImageItem]]] = [
            (g, g.images) for g in collection.groups
        ]
        if include_ungrouped:
            sources.append((None, collection.ungrouped))

        counters: dict[str, int] = {}
        batch_counter = 0
        entries: list[DownloadPlanEntry] = []
        for group, images in sources:
            if group is None:
                raw_dir = settings.ungrouped_directory or DEFAULT_UNGROUPED_DIRECTORY
                group_name = DEFAULT_GROUP
            else:
                raw_dir = group.directory or group.name
                group_name = group.name
            directory = join_directory(settings.download_directory, raw_dir)

            for image in images:
                if selection is not None and image.url not in selection:
                    continue
                counters[directory] = counters.get(directory, 0) + 1
                batch_counter += 1
                index = batch_counter if index_scope is IndexScope.BATCH else counters[directory]

                if image.custom_filename:
                    filename = sanitize_filename(image.custom_filename)
                else:
                    filename = apply_template(
                        settings.filename_template,
                        TemplateContext(
                            name=image.filename,
                            extension=image.extension,
                            index=index,
                            group=group_name,
                        ),
                        now=moment,
                    )
                entries.append(
                    DownloadPlanEntry(
                        directory=directory,
                        filename=filename,
                        url=image.url,
                        group_id=group.id if group is not None else None,
                        group=group_name if group is not None else None,
                        rename=overrides.get(image.url, RenameAction.UNSET),
                    )
                )

        plan = detect_conflicts(entries, settings.auto_rename)
        if deduplicate:
            plan = self._deduplicate(plan)
        logger.debug("Planned {} downloads", len(plan))
        return plan

    @staticmethod
    def _deduplicate(plan: list[DownloadPlanEntry]) -> list[DownloadPlanEntry]:
        """Rename later duplicates that are set to rename; keep overwrites as-is."""
        used: dict[str, set[str]] = {}
        for e in plan:
            used.setdefault(e.directory, set()).add(e.filename.lower())

        seen: dict[str, set[str]] = {}
        result: list[DownloadPlanEntry] = []
        for e in plan:
            names_seen = seen.setdefault(e.directory, set())
            lowered = e.filename.lower()
            if e.has_conflict and e.will_rename and lowered in names_seen:
                new_name = make_unique(e.filename, used[e.directory])
                used[e.directory].add(new_name.lower())
                e = DownloadPlanEntry(
                    directory=e.directory,
                    filename=new_name,
                    url=e.url,
                    group_id=e.group_id,
                    group=e.group,
                    rename=e.rename,
                )
                lowered = new_name.lower()
            names_seen.add(lowered)
            result.append(e)
        # Flags are recomputed against the renamed set; explicit actions survive.
        return detect_conflicts(result)
