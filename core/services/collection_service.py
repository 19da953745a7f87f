"""Collection state machine: groups, selection, drag/drop and moves.

Every operation mutates the owned `Collection` synchronously and keeps the
membership invariant: each URL lives in exactly one container (ungrouped or
one group). Moves take items out of their origin containers before inserting
them into the destination.

A drag gesture runs idle -> dragging -> (dropped | cancelled) -> idle. When a
dragged item is part of a multi-item selection and lands in another
container, the drop raises a `PendingDropIntent` instead of moving; the UI
asks the user and resolves it with `confirm_drop_intent` or
`cancel_drop_intent`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from enum import Enum
import json
import time
import uuid

from loguru import logger

from core.models import (
    Collection,
    DragState,
    Group,
    ImageItem,
    ItemRect,
    PendingDropIntent,
    ViewMode,
)

GROUP_COLORS: tuple[str, ...] = (
    "#1a73e8",
    "#ea4335",
    "#34a853",
    "#fbbc04",
    "#9c27b0",
    "#00acc1",
    "#ff7043",
    "#8bc34a",
    "#e91e63",
    "#3f51b5",
)


class DropOutcome(str, Enum):
    """Result of resolving a drop."""

    IGNORED = "ignored"
    NOOP = "noop"
    REORDERED = "reordered"
    MOVED = "moved"
    PENDING = "pending"


def calculate_insertion_index(
    pointer_x: float,
    pointer_y: float,
    rects: Sequence[ItemRect],
    container_length: int,
    view_mode: ViewMode = ViewMode.LIST,
) -> int:
    """Return where a drop at the pointer would insert into a container.

    `rects` are the container's rendered items in order. Items being dragged
    are skipped. The result is the index of the first remaining item whose
    midpoint lies past the pointer, 0 when the pointer precedes every item,
    and `container_length` when it is past all of them.
    """
    if not rects:
        return 0
    position = pointer_y if view_mode is ViewMode.LIST else pointer_x
    candidates = [r for r in rects if not r.is_dragging]
    if candidates and position < candidates[0].start(view_mode):
        return 0
    for r in candidates:
        if position < r.midpoint(view_mode):
            return r.index
    return container_length


class CollectionStateMachine:
    """Owns a collection plus its transient selection, drag and intent state."""

    def __init__(
        self,
        collection: Collection | None = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Create the state machine.

        Args:
            collection: Initial collection (an empty one when omitted).
            clock: Source of `added_at` timestamps.
            id_factory: Source of new group ids (uuid4 strings by default).
        """
        self.collection = collection or Collection()
        self._clock = clock
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self._selected: set[str] = set()
        self._drag = DragState()
        self._pending: PendingDropIntent | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def selected_urls(self) -> frozenset[str]:
        return frozenset(self._selected)

    @property
    def selected_count(self) -> int:
        return len(self._selected)

    def is_selected(self, url: str) -> bool:
        return url in self._selected

    def ordered_selection(self) -> list[str]:
        """Selected URLs in collection order."""
        return [u for u in self.collection.all_urls() if u in self._selected]

    @property
    def drag_state(self) -> DragState:
        return replace(self._drag, dragged_urls=list(self._drag.dragged_urls))

    @property
    def is_dragging(self) -> bool:
        return self._drag.is_dragging

    @property
    def dragged_urls(self) -> list[str]:
        return list(self._drag.dragged_urls)

    @property
    def pending_drop_intent(self) -> PendingDropIntent | None:
        return self._pending

    def find_duplicate_urls(self) -> list[str]:
        """URLs present more than once across all containers."""
        seen: set[str] = set()
        dupes: set[str] = set()
        for url in self.collection.all_urls():
            if url in seen:
                dupes.add(url)
            seen.add(url)
        return sorted(dupes)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def add_image(self, image: ImageItem, group_id: str | None = None) -> bool:
        """Append `image`; a URL already in the collection is a no-op."""
        return self.add_images([image], group_id) == 1

    def add_images(self, images: Iterable[ImageItem], group_id: str | None = None) -> int:
        """Append new images to ungrouped or `group_id`; returns how many were added."""
        target = self.collection.container(group_id)
        known = set(self.collection.all_urls())
        now = self._clock()
        added = 0
        for image in images:
            if not image.url or image.url in known:
                continue
            known.add(image.url)
            target.append(replace(image, added_at=image.added_at or now))
            added += 1
        return added

    def remove_image(self, url: str) -> bool:
        """Remove the image with `url` from whichever container holds it."""
        loc = self.collection.locate(url)
        if loc is None:
            return False
        group_id, index = loc
        del self.collection.container(group_id)[index]
        self._forget({url})
        return True

    def update_image_filename(self, url: str, custom_filename: str | None) -> bool:
        """Set (or clear, with an empty value) the custom filename of `url`."""
        loc = self.collection.locate(url)
        if loc is None:
            return False
        group_id, index = loc
        self.collection.container(group_id)[index].custom_filename = custom_filename or None
        return True

    def clear_ungrouped(self) -> None:
        urls = {img.url for img in self.collection.ungrouped}
        self.collection.ungrouped.clear()
        self._forget(urls)

    def clear_all(self) -> None:
        urls = set(self.collection.all_urls())
        self.collection.ungrouped.clear()
        self.collection.groups.clear()
        self._forget(urls)
        self._pending = None

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    def create_group(self, name: str, directory: str = "") -> Group:
        """Create an empty group using the first palette colour not yet taken."""
        name = (name or "").strip()
        if not name:
            raise ValueError("group name must not be empty")
        used = {g.color for g in self.collection.groups}
        color = next((c for c in GROUP_COLORS if c not in used), GROUP_COLORS[0])
        group = Group(id=self._new_id(), name=name, color=color, directory=directory)
        self.collection.groups.append(group)
        logger.info("Created group {} ({})", group.name, group.id)
        return group

    def update_group(
        self,
        group_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        directory: str | None = None,
        collapsed: bool | None = None,
    ) -> Group:
        group = self._require_group(group_id)
        if name is not None:
            if not name.strip():
                raise ValueError("group name must not be empty")
            group.name = name.strip()
        if color is not None:
            group.color = color
        if directory is not None:
            group.directory = directory
        if collapsed is not None:
            group.collapsed = collapsed
        return group

    def delete_group(self, group_id: str, keep_images: bool = True) -> Group:
        """Delete a group record.

        With `keep_images` (the default) its images are appended to ungrouped;
        otherwise they are discarded. Either way they leave the selection and
        any pending drop intent.
        """
        group = self._require_group(group_id)
        self.collection.groups = [g for g in self.collection.groups if g.id != group_id]
        if keep_images:
            self.collection.ungrouped.extend(group.images)
        if self._pending is not None and self._pending.target_group_id == group_id:
            self._pending = None
        if self._drag.is_dragging and self._drag.source_group_id == group_id:
            self.end_drag()
        self._forget({img.url for img in group.images})
        logger.info(
            "Deleted group {} ({} image(s) {})",
            group.name,
            len(group.images),
            "moved to ungrouped" if keep_images else "discarded",
        )
        return group

    def _require_group(self, group_id: str) -> Group:
        group = self.collection.find_group(group_id)
        if group is None:
            raise KeyError(group_id)
        return group

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def toggle_selection(self, url: str) -> bool:
        """Flip selection of `url`; returns the new state."""
        if url in self._selected:
            self._selected.discard(url)
            return False
        self._selected.add(url)
        return True

    def select_all(self, group_id: str | None = None) -> None:
        """Add every image of one container (ungrouped when None) to the selection."""
        self._selected.update(img.url for img in self.collection.container(group_id))

    def select_all_images(self) -> None:
        self._selected = set(self.collection.all_urls())

    def deselect_all(self) -> None:
        self._selected.clear()

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------
    def move_images(
        self, urls: Iterable[str], target_group_id: str | None, insert_at: int | None = None
    ) -> list[str]:
        """Move `urls` into one container, keeping their collection order.

        Items are removed from their origins first, then inserted at
        `insert_at` (appended when None or negative). `insert_at` refers to the
        target as rendered before the move, so moved items that sat ahead of it
        in the target shift it left.

        Returns:
            URLs actually moved, in insertion order.
        """
        target = self.collection.container(target_group_id)
        url_set = set(urls)
        if not url_set:
            return []

        position: int | None = None
        if insert_at is not None and insert_at >= 0:
            shift = sum(1 for img in target[:insert_at] if img.url in url_set)
            position = insert_at - shift

        moving: list[ImageItem] = []
        containers = [self.collection.ungrouped] + [g.images for g in self.collection.groups]
        for items in containers:
            kept = []
            for img in items:
                (moving if img.url in url_set else kept).append(img)
            items[:] = kept

        if position is None:
            target.extend(moving)
        else:
            position = min(position, len(target))
            target[position:position] = moving
        return [img.url for img in moving]

    def reorder_in_group(self, group_id: str | None, source_index: int, target_index: int) -> bool:
        """Move one item within a container.

        `target_index` is an insertion index computed with the item still in
        place. Dropping onto itself or directly after itself changes nothing.

        Returns:
            True when the order changed.

        Raises:
            IndexError: if `source_index` is out of range.
        """
        items = self.collection.container(group_id)
        if not 0 <= source_index < len(items):
            raise IndexError(f"source index {source_index} out of range")
        target_index = max(0, min(target_index, len(items)))
        if target_index in (source_index, source_index + 1):
            return False
        item = items.pop(source_index)
        if target_index > source_index:
            target_index -= 1
        items.insert(target_index, item)
        return True

    # ------------------------------------------------------------------
    # Drag and drop
    # ------------------------------------------------------------------
    def start_drag(self, url: str, source_group_id: str | None = None) -> bool:
        """Enter the dragging state for `url`.

        A selected item drags the whole selection (in collection order); an
        unselected one drags alone. Unknown URLs leave the machine idle.
        """
        loc = self.collection.locate(url)
        if loc is None:
            logger.debug("Drag start ignored for unknown url {}", url)
            return False
        if loc[0] != source_group_id:
            logger.debug("Drag source {} corrected to {}", source_group_id, loc[0])
        dragged = self.ordered_selection() if url in self._selected else [url]
        self._drag = DragState(
            is_dragging=True, dragged_url=url, dragged_urls=dragged, source_group_id=loc[0]
        )
        return True

    def end_drag(self) -> None:
        """Return to idle without mutating the collection."""
        self._drag = DragState()

    def drop(self, target_group_id: str | None, target_index: int) -> DropOutcome:
        """Resolve the active drag onto a container at an insertion index.

        Always ends the drag.
        """
        if not self._drag.is_dragging or self._drag.dragged_url is None:
            return DropOutcome.IGNORED
        drag = self._drag
        self.end_drag()

        if target_group_id is not None and self.collection.find_group(target_group_id) is None:
            return DropOutcome.IGNORED
        loc = self.collection.locate(drag.dragged_url)
        if loc is None:
            return DropOutcome.IGNORED
        source_group_id, source_index = loc

        if source_group_id == target_group_id:
            changed = self.reorder_in_group(target_group_id, source_index, target_index)
            return DropOutcome.REORDERED if changed else DropOutcome.NOOP

        if drag.dragged_url in self._selected and len(self._selected) > 1:
            self.request_drop_intent(
                drag.dragged_url, self.ordered_selection(), target_group_id, target_index
            )
            return DropOutcome.PENDING

        moved = self.move_images(drag.dragged_urls, target_group_id, target_index)
        return DropOutcome.MOVED if moved else DropOutcome.NOOP

    def handle_drop_payload(
        self, payload: str, target_group_id: str | None, target_index: int
    ) -> DropOutcome:
        """Resolve a drop carrying the internal JSON drag payload.

        The payload is `{"url": ..., "sourceGroupId": ..., "sourceIndex": ...}`.
        Malformed payloads, or payloads for a different item than the one being
        dragged, are ignored without mutation.
        """
        try:
            data = json.loads(payload)
            url = data["url"]
        except (TypeError, ValueError, KeyError) as ex:
            logger.debug("Ignoring malformed drop payload: {}", ex)
            self.end_drag()
            return DropOutcome.IGNORED
        if not self._drag.is_dragging:
            self.start_drag(url, data.get("sourceGroupId"))
        elif url != self._drag.dragged_url:
            logger.debug("Drop payload url {} does not match active drag", url)
            self.end_drag()
            return DropOutcome.IGNORED
        return self.drop(target_group_id, target_index)

    # ------------------------------------------------------------------
    # Drop intents
    # ------------------------------------------------------------------
    def request_drop_intent(
        self,
        dragged_url: str,
        selected_urls: Sequence[str],
        target_group_id: str | None,
        target_index: int,
    ) -> PendingDropIntent:
        self._pending = PendingDropIntent(
            dragged_url=dragged_url,
            selected_urls=list(selected_urls),
            target_group_id=target_group_id,
            target_index=target_index,
        )
        logger.info(
            "Drop intent raised for {} ({} selected) into {}",
            dragged_url,
            len(selected_urls),
            target_group_id or "ungrouped",
        )
        return self._pending

    def confirm_drop_intent(self, move_all: bool) -> list[str]:
        """Perform the pending move: the whole selection, or only the dragged item."""
        intent = self._pending
        if intent is None:
            return []
        self._pending = None
        urls = intent.selected_urls if move_all else [intent.dragged_url]
        moved = self.move_images(urls, intent.target_group_id, intent.target_index)
        logger.info("Drop intent confirmed (move_all={}): {} moved", move_all, len(moved))
        return moved

    def cancel_drop_intent(self) -> None:
        self._pending = None

    # ------------------------------------------------------------------
    def _forget(self, urls: set[str]) -> None:
        """Drop removed URLs from selection, pending intent and active drag."""
        if not urls:
            return
        self._selected -= urls
        if self._pending is not None:
            if self._pending.dragged_url in urls:
                self._pending = None
            else:
                self._pending.selected_urls = [
                    u for u in self._pending.selected_urls if u not in urls
                ]
        if self._drag.is_dragging:
            if self._drag.dragged_url in urls:
                self.end_drag()
            else:
                self._drag.dragged_urls = [u for u in self._drag.dragged_urls if u not in urls]
