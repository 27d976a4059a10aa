from __future__ import annotations

import threading

import pytest

from treepatch.snapshot.apply import apply_patch_set
from treepatch.snapshot.patch import PatchAdd, PatchSet
from treepatch.snapshot.schema import InstanceId, InstanceMetadata, InstanceSnapshot
from treepatch.tree import InstanceNotFoundError, LiveTree, TreeError


def test_sequential_ids_are_not_reused_after_removal() -> None:
    tree = LiveTree(id_scheme="sequential")
    first = tree.insert_instance(tree.root_id, "First", "Folder")
    tree.remove(first)

    second = tree.insert_instance(tree.root_id, "Second", "Folder")

    assert tree.root_id == "i1"
    assert first == "i2"
    assert second == "i3"


def test_explicit_ids_cannot_collide() -> None:
    tree = LiveTree(id_scheme="sequential")
    kept = tree.insert_instance(tree.root_id, "Kept", "Folder", instance_id=InstanceId("kept"))
    retired = tree.insert_instance(tree.root_id, "Retired", "Folder", instance_id=InstanceId("retired"))
    tree.remove(retired)

    with pytest.raises(TreeError):
        tree.insert_instance(tree.root_id, "Again", "Folder", instance_id=kept)
    with pytest.raises(TreeError):
        tree.insert_instance(tree.root_id, "Again", "Folder", instance_id=retired)


def test_sequential_allocation_skips_explicit_ids() -> None:
    tree = LiveTree(id_scheme="sequential", root_id=InstanceId("i1"))
    tree.insert_instance(tree.root_id, "Taken", "Folder", instance_id=InstanceId("i2"))

    allocated = tree.insert_instance(tree.root_id, "Allocated", "Folder")

    assert allocated not in {"i1", "i2"}


def test_uuid_ids_are_opaque_hex() -> None:
    tree = LiveTree()
    child = tree.insert_instance(tree.root_id, "Child", "Folder")

    assert len(child) == 32
    assert child != tree.root_id


def test_unknown_id_scheme_is_rejected() -> None:
    with pytest.raises(TreeError):
        LiveTree(id_scheme="snowflake")


def test_lookup_of_missing_instance_raises() -> None:
    tree = LiveTree()

    with pytest.raises(InstanceNotFoundError) as excinfo:
        tree.get(InstanceId("missing"))

    assert isinstance(excinfo.value, KeyError)
    assert excinfo.value.details == {"id": "missing"}
    assert tree.find(InstanceId("missing")) is None


def test_root_cannot_be_removed_directly() -> None:
    tree = LiveTree()

    with pytest.raises(TreeError):
        tree.remove(tree.root_id)


def test_remove_returns_every_removed_id(sample_tree) -> None:
    removed = sample_tree.tree.remove(sample_tree.workspace)

    assert removed == [sample_tree.workspace, sample_tree.folder, sample_tree.part]
    assert sample_tree.workspace not in sample_tree.tree.get(sample_tree.tree.root_id).children


def test_insert_snapshot_maps_snapshot_ids(sample_tree) -> None:
    tree = sample_tree.tree
    snapshot = InstanceSnapshot(
        snapshot_id=InstanceId("outer"),
        name="Outer",
        class_name="Model",
        children=[InstanceSnapshot(snapshot_id=InstanceId("inner"), name="Inner", class_name="Part")],
    )

    root_id, mapping = tree.insert_snapshot(sample_tree.storage, snapshot)

    assert mapping["outer"] == root_id
    assert tree.get(mapping["inner"]).parent == root_id


def test_clear_property_uses_class_default(sample_tree) -> None:
    tree = sample_tree.tree

    tree.clear_property(sample_tree.part, "Anchored")
    tree.clear_property(sample_tree.part, "Size")
    tree.clear_property(sample_tree.part, "NeverSet")

    properties = tree.get(sample_tree.part).properties
    assert properties["Anchored"] is False
    assert "Size" not in properties
    assert "NeverSet" not in properties


def test_to_snapshot_carries_live_ids(sample_tree) -> None:
    tree = sample_tree.tree
    tree.set_metadata(sample_tree.folder, InstanceMetadata(instigating_source="src/models"))

    snapshot = tree.to_snapshot(sample_tree.folder)

    assert snapshot.snapshot_id == sample_tree.folder
    assert snapshot.metadata.instigating_source == "src/models"
    assert [child.snapshot_id for child in snapshot.children] == [sample_tree.part]


def test_descendants_are_depth_first(sample_tree) -> None:
    tree = sample_tree.tree

    names = [node.name for node in tree.descendants(tree.root_id)]

    assert names == ["Workspace", "Models", "Brick", "ReplicatedStorage"]


def test_concurrent_applications_are_serialised() -> None:
    tree = LiveTree(id_scheme="sequential")
    parent = tree.insert_instance(tree.root_id, "Bucket", "Folder")
    barrier = threading.Barrier(8)
    results = []

    def worker(index: int) -> None:
        barrier.wait()
        patch_set = PatchSet(
            added_instances=[
                PatchAdd(parent_id=parent, instance=InstanceSnapshot(name=f"Item{index}-{n}", class_name="Part"))
                for n in range(25)
            ]
        )
        results.append(apply_patch_set(tree, patch_set))

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    added_ids = [entry.instance_id for applied in results for entry in applied.added]
    assert len(added_ids) == 200
    assert len(set(added_ids)) == 200
    assert len(tree.get(parent).children) == 200


@pytest.mark.parametrize(
    "call",
    [
        lambda tree, part: tree.set_name(part, "Interleaved"),
        lambda tree, part: tree.set_class_name(part, "WedgePart"),
        lambda tree, part: tree.set_property(part, "Color", "Lime green"),
        lambda tree, part: tree.clear_property(part, "Color"),
        lambda tree, part: tree.set_metadata(part, InstanceMetadata(ignore_unknown_instances=True)),
        lambda tree, part: tree.get(part),
        lambda tree, part: tree.to_snapshot(part),
        lambda tree, part: list(tree.descendants(tree.root_id)),
    ],
    ids=["set_name", "set_class_name", "set_property", "clear_property", "set_metadata", "get", "to_snapshot", "descendants"],
)
def test_direct_access_waits_for_open_mutation_window(sample_tree, call) -> None:
    tree = sample_tree.tree
    started = threading.Event()
    done = threading.Event()

    def worker() -> None:
        started.set()
        call(tree, sample_tree.part)
        done.set()

    with tree.mutation():
        thread = threading.Thread(target=worker)
        thread.start()
        assert started.wait(2)
        assert not done.wait(0.2)

    assert done.wait(2)
    thread.join()


def test_rename_from_other_thread_lands_after_window_closes(sample_tree) -> None:
    tree = sample_tree.tree
    done = threading.Event()

    def worker() -> None:
        tree.set_name(sample_tree.part, "Interleaved")
        done.set()

    with tree.mutation():
        thread = threading.Thread(target=worker)
        thread.start()
        assert not done.wait(0.2)
        tree.set_name(sample_tree.part, "InsideWindow")
        assert tree.get(sample_tree.part).name == "InsideWindow"

    thread.join(2)
    assert done.is_set()
    assert tree.get(sample_tree.part).name == "Interleaved"
