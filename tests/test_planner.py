from __future__ import annotations

from datetime import datetime

from conftest import make_image
import pytest

from core.models import Collection, Group, IndexScope, RenameAction, Settings
from core.services.planner import DownloadPlanner, join_directory, sanitize_directory_path

NOW = datetime(2024, 1, 2, 3, 4, 5)


@pytest.fixture
def planner() -> DownloadPlanner:
    return DownloadPlanner()


def test_groups_then_ungrouped_in_order(planner, sample_collection):
    plan = planner.build_plan(sample_collection, Settings(), now=NOW)
    assert [e.url.rsplit("/", 1)[1] for e in plan] == [
        "a.jpg",
        "b.jpg",
        "c.jpg",
        "x.jpg",
        "y.jpg",
        "u1.png",
        "u2.png",
    ]
    assert [e.directory for e in plan] == ["Travel"] * 3 + ["Meals"] * 2 + ["Ungrouped"] * 2
    assert [e.filename for e in plan][:2] == ["a.jpg", "b.jpg"]
    assert plan[0].group_id == "g1" and plan[0].group == "Travel"
    assert plan[-1].group_id is None and plan[-1].group is None


def test_index_is_per_directory(planner, sample_collection):
    settings = Settings(filename_template="{group}_{index}")
    names = [e.filename for e in planner.build_plan(sample_collection, settings, now=NOW)]
    assert names == [
        "Travel_1.jpg",
        "Travel_2.jpg",
        "Travel_3.jpg",
        "Food_1.jpg",
        "Food_2.jpg",
        "Ungrouped_1.png",
        "Ungrouped_2.png",
    ]


def test_index_continues_across_groups_sharing_a_directory(planner):
    collection = Collection(
        groups=[
            Group(id="a", name="A", color="", directory="Shared", images=[make_image("u1")]),
            Group(id="b", name="B", color="", directory="Shared", images=[make_image("u2")]),
        ]
    )
    plan = planner.build_plan(collection, Settings(filename_template="{index}"), now=NOW)
    assert [e.filename for e in plan] == ["1.jpg", "2.jpg"]
    assert not any(e.has_conflict for e in plan)


def test_batch_index_scope(planner, sample_collection):
    settings = Settings(filename_template="{index}")
    plan = planner.build_plan(
        sample_collection, settings, index_scope=IndexScope.BATCH, now=NOW
    )
    assert [e.filename.split(".")[0] for e in plan] == [str(i) for i in range(1, 8)]


def test_selected_subset_renumbers_index(planner, sample_collection):
    selected = {
        "https://example.com/b.jpg",
        "https://example.com/c.jpg",
        "https://example.com/y.jpg",
    }
    settings = Settings(filename_template="{group}_{index}")
    plan = planner.build_plan(sample_collection, settings, selected_urls=selected, now=NOW)
    assert [e.filename for e in plan] == ["Travel_1.jpg", "Travel_2.jpg", "Food_1.jpg"]


def test_exclude_ungrouped(planner, sample_collection):
    plan = planner.build_plan(sample_collection, Settings(), include_ungrouped=False, now=NOW)
    assert all(e.group_id is not None for e in plan)
    assert len(plan) == 5


def test_custom_filename_wins_and_is_sanitized(planner, sample_collection):
    sample_collection.groups[0].images[0].custom_filename = "my:pic.png"
    plan = planner.build_plan(sample_collection, Settings(filename_template="{index}"), now=NOW)
    assert plan[0].filename == "my_pic.png"
    assert plan[1].filename == "2.jpg"


def test_directories_use_base_and_ungrouped_settings(planner, sample_collection):
    settings = Settings(download_directory="Pictures/", ungrouped_directory="Loose")
    plan = planner.build_plan(sample_collection, settings, now=NOW)
    assert {e.directory for e in plan} == {"Pictures/Travel", "Pictures/Meals", "Pictures/Loose"}


def test_plan_is_deterministic(planner, sample_collection):
    settings = Settings(filename_template="{group}-{name}-{iso}-{index}")
    first = planner.build_plan(sample_collection, settings, now=NOW)
    second = planner.build_plan(sample_collection, settings, now=NOW)
    assert first == second


def test_duplicate_names_conflict_with_overwrite_default(planner):
    collection = Collection(
        groups=[
            Group(
                id="g",
                name="Vacation",
                color="",
                images=[make_image("u1", "photo"), make_image("u2", "photo")],
            )
        ]
    )
    plan = planner.build_plan(collection, Settings(auto_rename=False), now=NOW)
    assert all(e.has_conflict for e in plan)
    assert not any(e.will_rename for e in plan)

    plan = planner.build_plan(collection, Settings(auto_rename=True), now=NOW)
    assert all(e.has_conflict and e.will_rename for e in plan)


def test_overrides_apply_per_url(planner):
    collection = Collection(ungrouped=[make_image("u1", "p"), make_image("u2", "p")])
    plan = planner.build_plan(
        collection,
        Settings(auto_rename=False),
        overrides={"u2": RenameAction.RENAME},
        now=NOW,
    )
    assert plan[0].rename is RenameAction.OVERWRITE
    assert plan[1].rename is RenameAction.RENAME


def test_deduplicate_renames_later_duplicates(planner):
    collection = Collection(
        ungrouped=[
            make_image("u1", "photo"),
            make_image("u2", "photo_1"),
            make_image("u3", "photo"),
        ]
    )
    plan = planner.build_plan(collection, Settings(auto_rename=True), deduplicate=True, now=NOW)
    assert [e.filename for e in plan] == ["photo.jpg", "photo_1.jpg", "photo_2.jpg"]
    assert not any(e.has_conflict for e in plan)


def test_deduplicate_keeps_overwrites(planner):
    collection = Collection(ungrouped=[make_image("u1", "photo"), make_image("u2", "photo")])
    plan = planner.build_plan(collection, Settings(auto_rename=False), deduplicate=True, now=NOW)
    assert [e.filename for e in plan] == ["photo.jpg", "photo.jpg"]
    assert all(e.has_conflict for e in plan)


def test_empty_collection(planner):
    assert planner.build_plan(Collection(), Settings()) == []


def test_sanitize_directory_path():
    assert sanitize_directory_path("a\\b//c/") == "a/b/c"
    assert sanitize_directory_path("/x:y?/") == "x_y_"
    assert sanitize_directory_path("") == ""


def test_join_directory():
    assert join_directory("", "g") == "g"
    assert join_directory("base", "") == "base"
    assert join_directory("base/", "/g") == "base/g"
