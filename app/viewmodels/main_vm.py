"""ViewModel orchestrating the collection, persistence, preview and downloads."""

from __future__ import annotations

from collections.abc import Callable, Iterable
import copy
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, TypeVar

from loguru import logger

from core.models import (
    DownloadPlanEntry,
    Group,
    ImageItem,
    IndexScope,
    RenameAction,
    Settings,
    TreeFile,
    TreeStats,
)
from core.services.collection_service import CollectionStateMachine, DropOutcome
from core.services.conflict_service import build_tree, tree_stats
from core.services.drop_parser import DropData, parse_drop_data, to_image_items
from core.services.executor import CancelToken, DownloadExecutor, ProgressCallback
from core.services.filename_service import extract_name_and_extension
from core.services.interfaces import DownloadSummary, StorageError
from core.services.planner import DownloadPlanner
from infrastructure.collection_repository import CollectionRepository
from infrastructure.download_log import write_download_log
from infrastructure.settings import SETTINGS_KEYS, settings_from_dict

T = TypeVar("T")


@dataclass
class DownloadPreview:
    """What the user confirms before a download starts."""

    plan: list[DownloadPlanEntry] = field(default_factory=list)
    tree: dict[str, list[TreeFile]] = field(default_factory=dict)
    stats: TreeStats = field(default_factory=TreeStats)


class MainVM:
    """Main application view-model.

    Every collection mutation goes through `_commit`: the state is snapshotted,
    mutated, then persisted. When persisting fails the snapshot is restored and
    the `StorageError` propagates.
    """

    def __init__(
        self,
        repository: CollectionRepository,
        executor: DownloadExecutor,
        planner: DownloadPlanner | None = None,
        state: CollectionStateMachine | None = None,
        download_log_dir: str | None = None,
    ) -> None:
        """Create a MainVM.

        Args:
            repository: Loads and saves the collection and settings.
            executor: Runs download plans.
            planner: Plan builder (defaults to `DownloadPlanner`).
            state: Collection state machine (an empty one when omitted).
            download_log_dir: Where batch audit CSVs go; no log when None.
        """
        self._repo = repository
        self._executor = executor
        self._planner = planner or DownloadPlanner()
        self.state = state or CollectionStateMachine()
        self.settings = Settings()
        self.index_scope = IndexScope.DIRECTORY
        self._overrides: dict[str, RenameAction] = {}
        self._download_log_dir = download_log_dir
        self.last_summary: DownloadSummary | None = None
        self.last_log_path: str | None = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    async def load(self) -> None:
        """Replace in-memory state with what storage holds."""
        collection, settings = await self._repo.load()
        self.state = CollectionStateMachine(collection)
        self.settings = settings
        self._overrides.clear()

    async def _commit(self, mutation: Callable[[], T]) -> T:
        snapshot = copy.deepcopy(self.state)
        result = mutation()
        try:
            await self._repo.save_collection(self.state.collection)
        except StorageError:
            logger.error("Persist failed; restoring previous collection state")
            self.state = snapshot
            raise
        return result

    async def update_settings(self, **changes: Any) -> Settings:
        """Apply and persist setting changes given as `Settings` field names.

        Invalid values are ignored the same way stored values are.

        Raises:
            ValueError: for an unknown setting name.
        """
        unknown = set(changes) - {f.name for f in fields(Settings)}
        if unknown:
            raise ValueError(f"unknown setting(s): {', '.join(sorted(unknown))}")
        raw = {SETTINGS_KEYS[k]: v for k, v in changes.items()}
        previous = self.settings
        self.settings = settings_from_dict(raw, base=previous)
        try:
            await self._repo.save_settings(self.settings)
        except StorageError:
            self.settings = previous
            raise
        return self.settings

    # ------------------------------------------------------------------
    # Collection mutations
    # ------------------------------------------------------------------
    async def add_images(self, images: Iterable[ImageItem], group_id: str | None = None) -> int:
        items = list(images)
        return await self._commit(lambda: self.state.add_images(items, group_id))

    async def add_urls(self, urls: Iterable[str], group_id: str | None = None) -> int:
        """Add images by URL, deriving each name and extension from the URL."""
        items = []
        for url in urls:
            name, ext = extract_name_and_extension(url)
            items.append(ImageItem(url=url, filename=name, extension=ext))
        return await self.add_images(items, group_id)

    async def add_drop(
        self, data: DropData, group_id: str | None = None, recommended_only: bool = True
    ) -> int:
        """Add the images found in an external drop."""
        parsed = parse_drop_data(data)
        items = parsed.recommended if recommended_only else parsed.items
        return await self.add_images(to_image_items(items), group_id)

    async def remove_image(self, url: str) -> bool:
        self._overrides.pop(url, None)
        return await self._commit(lambda: self.state.remove_image(url))

    async def rename_image(self, url: str, custom_filename: str | None) -> bool:
        return await self._commit(lambda: self.state.update_image_filename(url, custom_filename))

    async def create_group(self, name: str, directory: str = "") -> Group:
        return await self._commit(lambda: self.state.create_group(name, directory))

    async def update_group(self, group_id: str, **changes: Any) -> Group:
        return await self._commit(lambda: self.state.update_group(group_id, **changes))

    async def delete_group(self, group_id: str, keep_images: bool = True) -> Group:
        return await self._commit(lambda: self.state.delete_group(group_id, keep_images))

    async def move_images(
        self, urls: Iterable[str], target_group_id: str | None, insert_at: int | None = None
    ) -> list[str]:
        moving = list(urls)
        return await self._commit(
            lambda: self.state.move_images(moving, target_group_id, insert_at)
        )

    async def reorder_in_group(
        self, group_id: str | None, source_index: int, target_index: int
    ) -> bool:
        return await self._commit(
            lambda: self.state.reorder_in_group(group_id, source_index, target_index)
        )

    async def drop(self, target_group_id: str | None, target_index: int) -> DropOutcome:
        return await self._commit(lambda: self.state.drop(target_group_id, target_index))

    async def confirm_drop_intent(self, move_all: bool) -> list[str]:
        return await self._commit(lambda: self.state.confirm_drop_intent(move_all))

    async def clear_ungrouped(self) -> None:
        await self._commit(self.state.clear_ungrouped)

    async def clear_all(self) -> None:
        self._overrides.clear()
        await self._commit(self.state.clear_all)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------
    def set_rename_action(self, url: str, action: RenameAction) -> None:
        """Override the conflict policy of one URL; `UNSET` clears the override."""
        if action is RenameAction.UNSET:
            self._overrides.pop(url, None)
        else:
            self._overrides[url] = action

    def set_all_rename_actions(self, action: RenameAction) -> None:
        """Apply one policy to every conflicting entry of the current preview."""
        for entry in self.preview().plan:
            if entry.has_conflict:
                self.set_rename_action(entry.url, action)

    def build_plan(
        self,
        selected_urls: Iterable[str] | None = None,
        include_ungrouped: bool = True,
        deduplicate: bool = False,
        now: datetime | None = None,
    ) -> list[DownloadPlanEntry]:
        return self._planner.build_plan(
            self.state.collection,
            self.settings,
            selected_urls=selected_urls,
            include_ungrouped=include_ungrouped,
            index_scope=self.index_scope,
            overrides=self._overrides,
            deduplicate=deduplicate,
            now=now,
        )

    def preview(
        self,
        selected_urls: Iterable[str] | None = None,
        include_ungrouped: bool = True,
        now: datetime | None = None,
    ) -> DownloadPreview:
        plan = self.build_plan(selected_urls, include_ungrouped, now=now)
        tree = build_tree(plan)
        return DownloadPreview(plan=plan, tree=tree, stats=tree_stats(tree))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------
    async def download(
        self,
        plan: list[DownloadPlanEntry] | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> DownloadSummary:
        """Execute `plan` (the full preview plan when omitted).

        Uses bounded parallelism when enabled in settings. When
        `clear_on_download` is set and at least one item completed, the
        collection is cleared afterwards.
        """
        if plan is None:
            plan = self.build_plan()
        if not plan:
            logger.info("Nothing to download")
            return DownloadSummary()

        if self.settings.parallel_downloads:
            summary = await self._executor.execute_parallel(
                plan, self.settings.download_concurrency, on_progress, cancel
            )
        else:
            summary = await self._executor.execute_sequential(plan, on_progress, cancel)
        self.last_summary = summary

        if self._download_log_dir:
            self.last_log_path = write_download_log(plan, summary, self._download_log_dir)
        if summary.failed:
            logger.warning("Failed downloads: {}", ", ".join(summary.failed_urls))
        if self.settings.clear_on_download and summary.completed > 0:
            await self.clear_all()
        return summary

    @staticmethod
    def failure_message(summary: DownloadSummary) -> str:
        """Human-readable result line listing failed URLs."""
        text = f"Downloaded {summary.completed} file(s)"
        if summary.failed:
            text += f", {summary.failed} failed: " + ", ".join(summary.failed_urls)
        if summary.skipped:
            text += f", {summary.skipped} skipped"
        return text
