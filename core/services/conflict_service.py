"""Conflict detection and preview-tree building for download plans.

Entries clash when they resolve to the same `directory/filename`. Detection
only flags; renaming is left to the downloader (`uniquify`) or to
`filename_service.make_unique`.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import replace

from core.models import DownloadPlanEntry, RenameAction, TreeFile, TreeStats

ROOT_DIRECTORY_LABEL = "(root)"


def detect_conflicts(
    entries: Iterable[DownloadPlanEntry] | None, auto_rename_default: bool = True
) -> list[DownloadPlanEntry]:
    """Return copies of `entries` with `has_conflict` and `rename` resolved.

    An explicit per-entry `rename` is preserved. Unset entries that conflict
    take `auto_rename_default`; unset entries without a conflict become
    `RENAME`. The output has no unset entries, so running detection on its own
    output gives the same flags.
    """
    if not entries:
        return []
    items = list(entries)
    counts = Counter(e.full_path for e in items)

    default_for_conflict = RenameAction.RENAME if auto_rename_default else RenameAction.OVERWRITE
    result: list[DownloadPlanEntry] = []
    for e in items:
        has_conflict = counts[e.full_path] > 1
        if e.rename is not RenameAction.UNSET:
            action = e.rename
        elif has_conflict:
            action = default_for_conflict
        else:
            action = RenameAction.RENAME
        result.append(replace(e, has_conflict=has_conflict, rename=action))
    return result


def build_tree(entries: Iterable[DownloadPlanEntry] | None) -> dict[str, list[TreeFile]]:
    """Group entries by directory, keeping plan order inside each directory.

    Entries with an empty directory go under `"(root)"`. `index` is the
    entry's position in the whole plan.
    """
    tree: dict[str, list[TreeFile]] = {}
    if not entries:
        return tree
    for index, e in enumerate(entries):
        key = e.directory or ROOT_DIRECTORY_LABEL
        tree.setdefault(key, []).append(
            TreeFile(
                filename=e.filename,
                has_conflict=e.has_conflict,
                url=e.url,
                index=index,
                will_rename=e.will_rename,
                group_id=e.group_id,
            )
        )
    return tree


def sorted_directories(tree: dict[str, list[TreeFile]]) -> list[str]:
    return sorted(tree)


def tree_stats(tree: dict[str, list[TreeFile]]) -> TreeStats:
    """Count files, conflicting files, and conflicting files set to overwrite."""
    stats = TreeStats()
    for files in tree.values():
        for f in files:
            stats.total += 1
            if f.has_conflict:
                stats.conflicts += 1
                if not f.will_rename:
                    stats.will_overwrite += 1
    return stats


def has_overwrite_conflicts(entries: Iterable[DownloadPlanEntry] | None) -> bool:
    if not entries:
        return False
    return any(e.has_conflict and e.rename is RenameAction.OVERWRITE for e in entries)


def has_any_conflicts(entries: Iterable[DownloadPlanEntry] | None) -> bool:
    if not entries:
        return False
    return any(e.has_conflict for e in entries)


def unique_directories(entries: Iterable[DownloadPlanEntry] | None) -> list[str]:
    """Sorted distinct non-empty directories."""
    if not entries:
        return []
    return sorted({e.directory for e in entries if e.directory})


def group_by_directory(
    entries: Iterable[DownloadPlanEntry] | None,
) -> dict[str, list[DownloadPlanEntry]]:
    grouped: dict[str, list[DownloadPlanEntry]] = {}
    if not entries:
        return grouped
    for e in entries:
        grouped.setdefault(e.directory or "", []).append(e)
    return grouped
