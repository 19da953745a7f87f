"""Core domain models for collected images, groups and download plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ImageSource(str, Enum):
    """Where an image entered the collection from."""

    CONTENT_SCRIPT = "content-script"
    CLIPBOARD = "clipboard"
    EXTERNAL_DROP = "external-drop"
    FILE_DROP = "file-drop"


class ViewMode(str, Enum):
    """Layout of a rendered container; decides the drag axis."""

    LIST = "list"
    GRID = "grid"


class RenameAction(str, Enum):
    """Per-entry conflict policy.

    `UNSET` means "not decided yet"; conflict detection resolves it to one of
    the two explicit values.
    """

    UNSET = "unset"
    RENAME = "rename"
    OVERWRITE = "overwrite"


class IndexScope(str, Enum):
    """How `{index}` is numbered across a download plan."""

    DIRECTORY = "directory"
    BATCH = "batch"


@dataclass
class ImageItem:
    """A single collected image, identified by its `url`."""

    url: str
    filename: str = "image"
    extension: str = ".jpg"
    custom_filename: str | None = None
    width: int | None = None
    height: int | None = None
    size: int | None = None
    source: ImageSource = ImageSource.CONTENT_SCRIPT
    added_at: float | None = None


@dataclass
class Group:
    """A named, coloured container of images with an optional target directory."""

    id: str
    name: str
    color: str
    directory: str = ""
    collapsed: bool = False
    images: list[ImageItem] = field(default_factory=list)


@dataclass
class Collection:
    """Root of the in-memory model: ungrouped images plus ordered groups."""

    ungrouped: list[ImageItem] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)

    def find_group(self, group_id: str) -> Group | None:
        """Return the group with `group_id`, or None."""
        for g in self.groups:
            if g.id == group_id:
                return g
        return None

    def container(self, group_id: str | None) -> list[ImageItem]:
        """Return the image list for `group_id` (None means ungrouped).

        Raises:
            KeyError: if no group has `group_id`.
        """
        if group_id is None:
            return self.ungrouped
        group = self.find_group(group_id)
        if group is None:
            raise KeyError(group_id)
        return group.images

    def locate(self, url: str) -> tuple[str | None, int] | None:
        """Return `(group_id, index)` of `url`, or None when absent."""
        for i, img in enumerate(self.ungrouped):
            if img.url == url:
                return None, i
        for g in self.groups:
            for i, img in enumerate(g.images):
                if img.url == url:
                    return g.id, i
        return None

    def iter_images(self) -> list[ImageItem]:
        """All images in collection order: ungrouped first, then each group."""
        items = list(self.ungrouped)
        for g in self.groups:
            items.extend(g.images)
        return items

    def all_urls(self) -> list[str]:
        """URLs of all images in collection order (duplicates kept)."""
        return [img.url for img in self.iter_images()]


@dataclass
class Settings:
    """User settings persisted in the `settings` storage slot."""

    download_directory: str = ""
    ungrouped_directory: str = ""
    filename_template: str = "{name}"
    auto_rename: bool = False
    confirm_download: bool = False
    list_thumbnail_size: int = 60
    grid_thumbnail_size: int = 90
    show_dimensions: bool = True
    show_filetype: bool = True
    clear_on_download: bool = False
    remember_groups: bool = True
    theme: str = "default"
    ui_scale: str = "medium"
    density: str = "comfortable"
    download_concurrency: int = 5
    parallel_downloads: bool = True


@dataclass
class DragState:
    """Transient state of an in-progress pointer drag."""

    is_dragging: bool = False
    dragged_url: str | None = None
    dragged_urls: list[str] = field(default_factory=list)
    source_group_id: str | None = None


@dataclass
class PendingDropIntent:
    """A multi-selection drop awaiting "move one" vs "move all" confirmation."""

    dragged_url: str
    selected_urls: list[str]
    target_group_id: str | None
    target_index: int


@dataclass
class ItemRect:
    """Rendered bounds of one item, supplied by the UI layer.

    Attributes:
        index: Position of the item in its container.
        left: X of the leading edge.
        top: Y of the leading edge.
        width: Rendered width.
        height: Rendered height.
        is_dragging: True when the item is part of the active drag.
    """

    index: int
    left: float
    top: float
    width: float
    height: float
    is_dragging: bool = False

    def start(self, view_mode: ViewMode) -> float:
        """Leading edge along the layout axis (vertical for lists)."""
        return self.top if view_mode is ViewMode.LIST else self.left

    def midpoint(self, view_mode: ViewMode) -> float:
        if view_mode is ViewMode.LIST:
            return self.top + self.height / 2
        return self.left + self.width / 2


@dataclass
class DownloadPlanEntry:
    """One planned download; derived, never persisted."""

    directory: str
    filename: str
    url: str
    group_id: str | None = None
    group: str | None = None
    has_conflict: bool = False
    rename: RenameAction = RenameAction.UNSET

    @property
    def full_path(self) -> str:
        """`directory/filename`, or just the filename for the root directory."""
        return f"{self.directory}/{self.filename}" if self.directory else self.filename

    @property
    def will_rename(self) -> bool:
        """True unless the entry is explicitly set to overwrite."""
        return self.rename is not RenameAction.OVERWRITE


@dataclass
class TreeFile:
    """A file row in the download preview tree."""

    filename: str
    has_conflict: bool
    url: str
    index: int
    will_rename: bool
    group_id: str | None = None


@dataclass
class TreeStats:
    """Aggregate counts over a preview tree."""

    total: int = 0
    conflicts: int = 0
    will_overwrite: int = 0
