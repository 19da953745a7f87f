from __future__ import annotations

import asyncio

from conftest import FakeDownloader, FakeStorage
import pytest

from app.viewmodels.main_vm import MainVM
from core.models import ImageItem, IndexScope, RenameAction, TreeStats
from core.services.drop_parser import DropData
from core.services.executor import DownloadExecutor
from core.services.interfaces import CONFLICT_OVERWRITE, StorageError
from infrastructure.collection_repository import CollectionRepository, group_to_dict, image_to_dict


def make_vm(storage, downloader=None, log_dir=None) -> MainVM:
    executor = DownloadExecutor(downloader or FakeDownloader())
    return MainVM(CollectionRepository(storage), executor, download_log_dir=log_dir)


@pytest.fixture
def seeded_storage(sample_collection) -> FakeStorage:
    return FakeStorage(
        {
            "groups": [group_to_dict(g) for g in sample_collection.groups],
            "ungrouped": [image_to_dict(i) for i in sample_collection.ungrouped],
            "settings": {"filenameTemplate": "{name}"},
        }
    )


def loaded_vm(storage, **kwargs) -> MainVM:
    vm = make_vm(storage, **kwargs)
    asyncio.run(vm.load())
    return vm


def test_load(seeded_storage, sample_collection):
    vm = loaded_vm(seeded_storage)
    assert vm.state.collection == sample_collection
    assert vm.settings.filename_template == "{name}"


def test_load_failure_keeps_previous_state(seeded_storage):
    vm = loaded_vm(seeded_storage)
    seeded_storage.fail_on.add("get")
    with pytest.raises(StorageError):
        asyncio.run(vm.load())
    assert len(vm.state.collection.all_urls()) == 7


def test_mutations_are_persisted(storage):
    vm = loaded_vm(storage)

    async def scenario():
        group = await vm.create_group("Cats", "pets/cats")
        await vm.add_urls(["https://example.com/a/tabby.png"], group.id)
        await vm.add_urls(["https://example.com/b/loose.gif"])
        return group

    group = asyncio.run(scenario())
    assert storage.data["groups"][0]["id"] == group.id
    assert storage.data["groups"][0]["images"][0]["filename"] == "tabby"
    assert storage.data["groups"][0]["images"][0]["extension"] == ".png"
    assert storage.data["ungrouped"][0]["url"] == "https://example.com/b/loose.gif"


def test_failed_persist_rolls_back(seeded_storage):
    vm = loaded_vm(seeded_storage)
    before = vm.state.collection.all_urls()
    vm.state.toggle_selection("https://example.com/a.jpg")
    seeded_storage.fail_on.add("set")

    with pytest.raises(StorageError):
        asyncio.run(vm.create_group("Nope"))
    with pytest.raises(StorageError):
        asyncio.run(vm.remove_image("https://example.com/a.jpg"))
    with pytest.raises(StorageError):
        asyncio.run(vm.delete_group("g1"))

    assert vm.state.collection.all_urls() == before
    assert [g.id for g in vm.state.collection.groups] == ["g1", "g2"]
    assert vm.state.is_selected("https://example.com/a.jpg")


def test_update_settings(storage):
    vm = loaded_vm(storage)
    settings = asyncio.run(vm.update_settings(auto_rename=True, ui_scale="huge"))
    assert settings.auto_rename is True
    assert settings.ui_scale == "medium"
    assert storage.data["settings"]["autoRename"] is True

    with pytest.raises(ValueError):
        asyncio.run(vm.update_settings(colour="red"))

    storage.fail_on.add("set")
    with pytest.raises(StorageError):
        asyncio.run(vm.update_settings(theme="dark"))
    assert vm.settings.theme == "default"


def test_preview_tree_and_stats(seeded_storage):
    vm = loaded_vm(seeded_storage)
    preview = vm.preview()
    assert len(preview.plan) == 7
    assert set(preview.tree) == {"Travel", "Meals", "Ungrouped"}
    assert preview.stats == TreeStats(total=7, conflicts=0, will_overwrite=0)


def conflicting_vm(storage) -> MainVM:
    vm = loaded_vm(storage)
    asyncio.run(
        vm.add_images(
            [ImageItem(url="u1", filename="photo"), ImageItem(url="u2", filename="photo")]
        )
    )
    return vm


def test_rename_overrides(storage):
    vm = conflicting_vm(storage)
    assert vm.preview().stats == TreeStats(total=2, conflicts=2, will_overwrite=2)

    vm.set_rename_action("u1", RenameAction.RENAME)
    assert vm.preview().stats.will_overwrite == 1

    vm.set_all_rename_actions(RenameAction.RENAME)
    assert vm.preview().stats.will_overwrite == 0

    vm.set_rename_action("u1", RenameAction.UNSET)
    assert vm.preview().stats.will_overwrite == 1


def test_index_scope_is_used(seeded_storage):
    vm = loaded_vm(seeded_storage)
    asyncio.run(vm.update_settings(filename_template="{index}"))
    vm.index_scope = IndexScope.BATCH
    assert vm.preview().plan[-1].filename == "7.png"


def test_download_parallel_by_default(seeded_storage, tmp_path):
    downloader = FakeDownloader(delay=0.01)
    vm = loaded_vm(seeded_storage, downloader=downloader, log_dir=str(tmp_path))
    summary = asyncio.run(vm.download())
    assert summary.completed == 7
    assert downloader.max_in_flight == 5
    assert vm.last_log_path is not None
    assert vm.state.collection.all_urls()


def test_download_sequential_and_overwrite_action(storage):
    downloader = FakeDownloader(delay=0.001)
    vm = conflicting_vm(storage)
    vm._executor = DownloadExecutor(downloader)  # pylint: disable=protected-access
    asyncio.run(vm.update_settings(parallel_downloads=False))
    asyncio.run(vm.download())
    assert downloader.max_in_flight == 1
    assert [r.conflict_action for r in downloader.requests] == [CONFLICT_OVERWRITE] * 2
    assert downloader.requests[0].full_path == "Ungrouped/photo.jpg"


def test_download_failures_are_listed(seeded_storage):
    failing = {"https://example.com/a.jpg", "https://example.com/y.jpg"}
    vm = loaded_vm(seeded_storage, downloader=FakeDownloader(failing))
    summary = asyncio.run(vm.download())
    assert (summary.completed, summary.failed) == (5, 2)
    message = MainVM.failure_message(summary)
    assert "2 failed" in message
    for url in failing:
        assert url in message


def test_clear_on_download(seeded_storage):
    vm = loaded_vm(seeded_storage)
    asyncio.run(vm.update_settings(clear_on_download=True))
    asyncio.run(vm.download())
    assert vm.state.collection.all_urls() == []
    assert seeded_storage.data["groups"] == []


def test_no_clear_when_nothing_completed(seeded_storage):
    all_urls = {
        "https://example.com/" + n
        for n in ("a.jpg", "b.jpg", "c.jpg", "x.jpg", "y.jpg", "u1.png", "u2.png")
    }
    vm = loaded_vm(seeded_storage, downloader=FakeDownloader(all_urls))
    asyncio.run(vm.update_settings(clear_on_download=True))
    summary = asyncio.run(vm.download())
    assert summary.completed == 0
    assert len(vm.state.collection.all_urls()) == 7


def test_download_empty_collection(storage):
    summary = asyncio.run(loaded_vm(storage).download())
    assert (summary.completed, summary.failed) == (0, 0)


def test_drop_intent_flow_is_persisted(seeded_storage):
    vm = loaded_vm(seeded_storage)
    a, b = "https://example.com/a.jpg", "https://example.com/b.jpg"
    vm.state.toggle_selection(a)
    vm.state.toggle_selection(b)
    vm.state.start_drag(a, "g1")

    asyncio.run(vm.drop("g2", 0))
    assert vm.state.pending_drop_intent is not None
    moved = asyncio.run(vm.confirm_drop_intent(move_all=True))
    assert moved == [a, b]
    assert [i["url"] for i in seeded_storage.data["groups"][1]["images"][:2]] == [a, b]


def test_add_drop(storage):
    vm = loaded_vm(storage)
    html = '<img src="https://example.com/p/hero.jpg"><img src="https://example.com/logo.png">'
    added = asyncio.run(vm.add_drop(DropData(html=html)))
    assert added == 1
    assert storage.data["ungrouped"][0]["source"] == "external-drop"
