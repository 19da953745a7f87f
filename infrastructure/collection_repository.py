"""Persistence of the collection and user settings through a storage backend.

Three slots (`groups`, `ungrouped`, `settings`) hold camelCase JSON records. Absent slots load
as defaults; a failing backend raises `StorageError` so callers never
mistake an unreadable store for an empty one.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from core.models import Collection, Group, ImageItem, ImageSource, Settings
from core.services.interfaces import StorageBackend, StorageError
from infrastructure.settings import settings_from_dict, settings_to_dict

GROUPS_KEY = "groups"
UNGROUPED_KEY = "ungrouped"
SETTINGS_KEY = "settings"


def _opt_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def image_to_dict(image: ImageItem) -> dict[str, Any]:
    record: dict[str, Any] = {
        "url": image.url,
        "filename": image.filename,
        "extension": image.extension,
        "source": image.source.value,
    }
    optional = {
        "customFilename": image.custom_filename,
        "width": image.width,
        "height": image.height,
        "size": image.size,
        "addedAt": image.added_at,
    }
    record.update({k: v for k, v in optional.items() if v is not None})
    return record


def image_from_dict(raw: Any) -> ImageItem:
    """Parse one image record.

    Raises:
        ValueError: if the record is not a mapping or has no url.
    """
    if not isinstance(raw, dict) or not raw.get("url"):
        raise ValueError(f"invalid image record: {raw!r}")
    try:
        source = ImageSource(raw.get("source", ImageSource.CONTENT_SCRIPT.value))
    except ValueError:
        source = ImageSource.CONTENT_SCRIPT
    added_at = raw.get("addedAt")
    return ImageItem(
        url=str(raw["url"]),
        filename=str(raw.get("filename") or "image"),
        extension=str(raw.get("extension") or ".jpg"),
        custom_filename=raw.get("customFilename") or None,
        width=_opt_int(raw.get("width")),
        height=_opt_int(raw.get("height")),
        size=_opt_int(raw.get("size")),
        source=source,
        added_at=float(added_at) if isinstance(added_at, (int, float)) else None,
    )


def group_to_dict(group: Group) -> dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "color": group.color,
        "directory": group.directory,
        "collapsed": group.collapsed,
        "images": [image_to_dict(i) for i in group.images],
    }


def group_from_dict(raw: Any) -> Group:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ValueError(f"invalid group record: {raw!r}")
    return Group(
        id=str(raw["id"]),
        name=str(raw.get("name") or ""),
        color=str(raw.get("color") or ""),
        directory=str(raw.get("directory") or ""),
        collapsed=bool(raw.get("collapsed", False)),
        images=_parse_images(raw.get("images")),
    )


def _parse_images(raw: Any) -> list[ImageItem]:
    images: list[ImageItem] = []
    if not isinstance(raw, list):
        return images
    for row in raw:
        try:
            images.append(image_from_dict(row))
        except (ValueError, TypeError) as ex:
            logger.warning("Skipping image record: {}", ex)
    return images


def _drop_duplicate_urls(collection: Collection) -> None:
    """Keep the first occurrence of each URL in collection order."""
    seen: set[str] = set()

    def _unique(items: list[ImageItem]) -> list[ImageItem]:
        kept = []
        for img in items:
            if img.url in seen:
                logger.warning("Dropping duplicate stored image {}", img.url)
                continue
            seen.add(img.url)
            kept.append(img)
        return kept

    collection.ungrouped = _unique(collection.ungrouped)
    for g in collection.groups:
        g.images = _unique(g.images)


class CollectionRepository:
    """Load and save the collection and settings slots."""

    def __init__(self, storage: StorageBackend, defaults: Settings | None = None) -> None:
        """Create a repository.

        Args:
            storage: Backend holding the slots.
            defaults: Settings used for keys the stored record lacks.
        """
        self._storage = storage
        self._defaults = defaults or Settings()

    async def _get(self, key: str) -> Any:
        try:
            return await self._storage.get(key)
        except StorageError:
            raise
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.error("Storage get {} failed: {}", key, ex)
            raise StorageError(f"cannot read slot {key}: {ex}") from ex

    async def _set(self, key: str, value: Any) -> None:
        try:
            await self._storage.set(key, value)
        except StorageError:
            raise
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.error("Storage set {} failed: {}", key, ex)
            raise StorageError(f"cannot write slot {key}: {ex}") from ex

    async def load(self) -> tuple[Collection, Settings]:
        """Read all slots and return `(collection, settings)`."""
        raw_groups = await self._get(GROUPS_KEY)
        raw_ungrouped = await self._get(UNGROUPED_KEY)
        raw_settings = await self._get(SETTINGS_KEY)

        groups: list[Group] = []
        if isinstance(raw_groups, list):
            for row in raw_groups:
                try:
                    groups.append(group_from_dict(row))
                except (ValueError, TypeError) as ex:
                    logger.warning("Skipping group record: {}", ex)
        collection = Collection(ungrouped=_parse_images(raw_ungrouped), groups=groups)
        _drop_duplicate_urls(collection)

        raw = raw_settings if isinstance(raw_settings, dict) else {}
        settings = settings_from_dict(raw, base=self._defaults)
        logger.info(
            "Loaded {} group(s), {} ungrouped image(s)",
            len(collection.groups),
            len(collection.ungrouped),
        )
        return collection, settings

    async def save_collection(self, collection: Collection) -> None:
        """Write the `groups` slot, then the `ungrouped` slot.

        When the second write fails the previous `groups` value is written back,
        so a reload never sees half of a move between the two slots.
        """
        previous_groups = await self._get(GROUPS_KEY)
        await self._set(GROUPS_KEY, [group_to_dict(g) for g in collection.groups])
        try:
            await self._set(UNGROUPED_KEY, [image_to_dict(i) for i in collection.ungrouped])
        except StorageError:
            logger.warning("Restoring groups slot after failed ungrouped write")
            await self._set(GROUPS_KEY, previous_groups if previous_groups is not None else [])
            raise

    async def save_settings(self, settings: Settings) -> None:
        await self._set(SETTINGS_KEY, settings_to_dict(settings))
