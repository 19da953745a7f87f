from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path
import sys

from loguru import logger

from app.viewmodels.image_vm import ImageVM
from app.viewmodels.main_vm import MainVM
from core.services.conflict_service import sorted_directories
from core.services.executor import DownloadExecutor
from core.services.interfaces import StorageError
from infrastructure.collection_repository import CollectionRepository
from infrastructure.json_storage import JsonFileStorage
from infrastructure.local_downloader import LocalFileDownloader
from infrastructure.logging import init_logging
from infrastructure.settings import JsonSettings

BASE_DIR = Path(__file__).parent


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-collector", description="Organize collected images and download them."
    )
    parser.add_argument("--settings", default=str(BASE_DIR / "settings.json"))
    parser.add_argument("--storage", help="Override the storage file path")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("preview", help="Show the planned download tree")
    sub.add_parser("list", help="List collected images by group")

    dl = sub.add_parser("download", help="Download every planned image")
    dl.add_argument("--root", help="Directory files are written under")
    dl.add_argument("--sequential", action="store_true", help="Download one at a time")

    add = sub.add_parser("add", help="Add image URLs to the collection")
    add.add_argument("urls", nargs="+")
    add.add_argument("--group", help="Group name (created when missing)")
    return parser


def _print_images(vm: MainVM) -> None:
    settings = vm.settings
    sections = [(g.name, g.images) for g in vm.state.collection.groups]
    sections.append(("Ungrouped", vm.state.collection.ungrouped))
    for title, images in sections:
        print(f"{title} ({len(images)})")
        for image in images:
            row = ImageVM(image)
            subtitle = row.subtitle(settings.show_dimensions, settings.show_filetype)
            print(f"  {row.file_name}" + (f"  [{subtitle}]" if subtitle else ""))


def _print_preview(vm: MainVM) -> None:
    preview = vm.preview()
    if not preview.plan:
        print("No images collected.")
        return
    for directory in sorted_directories(preview.tree):
        print(f"{directory}/")
        for f in preview.tree[directory]:
            marker = ""
            if f.has_conflict:
                marker = "  [conflict: rename]" if f.will_rename else "  [conflict: overwrite]"
            print(f"  {f.filename}{marker}")
    stats = preview.stats
    print(
        f"\n{stats.total} file(s), {stats.conflicts} conflict(s), "
        f"{stats.will_overwrite} will overwrite"
    )


async def _run(args: argparse.Namespace, settings: JsonSettings) -> int:
    storage_path = args.storage or settings.get("storage.path", "storage.json")
    repo = CollectionRepository(
        JsonFileStorage(os.path.expanduser(storage_path)), settings.default_settings()
    )
    root = getattr(args, "root", None) or settings.get("downloads.root", "downloads")
    executor = DownloadExecutor(LocalFileDownloader(os.path.expanduser(root)))
    vm = MainVM(repo, executor, download_log_dir=settings.get("downloads.log_directory"))
    await vm.load()

    if args.command == "preview":
        _print_preview(vm)
        return 0

    if args.command == "list":
        _print_images(vm)
        return 0

    if args.command == "add":
        group_id = None
        if args.group:
            match = next((g for g in vm.state.collection.groups if g.name == args.group), None)
            group_id = match.id if match else (await vm.create_group(args.group)).id
        added = await vm.add_urls(args.urls, group_id)
        print(f"Added {added} image(s).")
        return 0

    if args.sequential:
        vm.settings.parallel_downloads = False

    def _progress(completed: int, failed: int, total: int) -> None:
        print(f"\r{completed + failed}/{total}", end="", flush=True)

    summary = await vm.download(on_progress=_progress)
    print()
    print(vm.failure_message(summary))
    return 1 if summary.failed else 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = JsonSettings(args.settings)
    init_logging(settings.get("logging.directory") or None, settings.get("logging.level", "INFO"))
    try:
        return asyncio.run(_run(args, settings))
    except StorageError as ex:
        logger.error("Storage failure: {}", ex)
        print(f"Storage error: {ex}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
