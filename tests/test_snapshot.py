import pytest

from conftest import FakeDirectory, item
from driveflow.errors import FolderCycleError, MalformedRecordError, TransportError
from driveflow.models import FileKind
from driveflow.snapshot import fetch_snapshot, fetch_snapshot_deep, record_from_item, walk_folder


def test_record_from_item_maps_fields():
    record = record_from_item(
        {
            "id": "f1",
            "name": "report.pdf",
            "mimeType": "application/pdf",
            "modifiedTime": "2024-03-01T10:00:00.000Z",
            "size": "2048",
            "parents": ["p1"],
        }
    )
    assert record.id == "f1"
    assert record.kind is FileKind.FILE
    assert record.size == 2048
    assert record.parent_id == "p1"


def test_record_from_item_folder_kind():
    assert record_from_item(item("d", folder=True)).is_folder


@pytest.mark.parametrize(
    "raw",
    [
        {"name": "no id", "modifiedTime": "t"},
        {"id": "x", "name": "no time"},
        {"id": "", "modifiedTime": "t"},
        "not a dict",
    ],
)
def test_record_from_item_rejects_malformed(raw):
    with pytest.raises(MalformedRecordError):
        record_from_item(raw)


def test_fetch_snapshot_follows_pagination():
    directory = FakeDirectory({"root": [item(f"f{i}") for i in range(7)]}, page_size=3)

    snapshot = fetch_snapshot(directory, "root")

    assert sorted(snapshot) == [f"f{i}" for i in range(7)]
    assert directory.calls == [("root", None), ("root", "3"), ("root", "6")]


def test_fetch_snapshot_empty_folder():
    assert fetch_snapshot(FakeDirectory(), "root") == {}


def test_fetch_snapshot_skips_malformed_and_reports():
    directory = FakeDirectory({"root": [item("good"), {"id": "bad"}, item("also-good")]})
    errors = []

    snapshot = fetch_snapshot(directory, "root", on_error=errors.append)

    assert sorted(snapshot) == ["also-good", "good"]
    assert len(errors) == 1
    assert isinstance(errors[0], MalformedRecordError)


def test_fetch_snapshot_propagates_listing_errors():
    directory = FakeDirectory({"root": [item("a")]})
    directory.fail_with = TransportError("boom")
    with pytest.raises(TransportError):
        fetch_snapshot(directory, "root")


def test_repeated_page_token_is_an_error():
    class LoopingDirectory(FakeDirectory):
        def list_children(self, folder_id, page_token=None):
            page = super().list_children(folder_id, page_token)
            page.next_page_token = "same"
            return page

    with pytest.raises(TransportError):
        fetch_snapshot(LoopingDirectory({"root": [item("a")]}), "root")


def test_deep_snapshot_flattens_tree():
    directory = FakeDirectory(
        {
            "root": [item("folderA", folder=True), item("fileY")],
            "folderA": [item("fileX")],
        }
    )

    snapshot = fetch_snapshot_deep(directory, "root")

    assert set(snapshot) == {"folderA", "fileX", "fileY"}
    assert snapshot["fileX"].parent_id == "folderA"
    assert snapshot["folderA"].is_folder


def test_deep_snapshot_expands_shared_folder_once():
    directory = FakeDirectory(
        {
            "root": [item("a", folder=True), item("b", folder=True)],
            "a": [item("shared", folder=True)],
            "b": [item("shared", folder=True)],
            "shared": [item("leaf")],
        }
    )

    snapshot = fetch_snapshot_deep(directory, "root")

    assert set(snapshot) == {"a", "b", "shared", "leaf"}
    assert [call for call in directory.calls if call[0] == "shared"] == [("shared", None)]


def test_deep_snapshot_detects_cycle():
    directory = FakeDirectory(
        {
            "root": [item("a", folder=True)],
            "a": [item("b", folder=True)],
            "b": [item("a", folder=True)],
        }
    )

    with pytest.raises(FolderCycleError) as excinfo:
        fetch_snapshot_deep(directory, "root")

    assert excinfo.value.folder_id == "a"
    assert excinfo.value.ancestors == ("root", "a", "b")


def test_deep_snapshot_respects_max_depth():
    directory = FakeDirectory(
        {
            "root": [item("a", folder=True)],
            "a": [item("b", folder=True)],
            "b": [item("deep")],
        }
    )

    assert set(fetch_snapshot_deep(directory, "root", max_depth=1)) == {"a"}
    assert set(fetch_snapshot_deep(directory, "root", max_depth=2)) == {"a", "b"}
    assert set(fetch_snapshot_deep(directory, "root")) == {"a", "b", "deep"}


def test_walk_folder_yields_lineage():
    directory = FakeDirectory({"root": [item("a", folder=True)], "a": [item("x")]})
    lineages = {record.id: lineage for record, lineage in walk_folder(directory, "root")}
    assert lineages == {"a": ("root",), "x": ("root", "a")}


def test_deep_snapshot_aborts_on_subfolder_failure():
    directory = FakeDirectory({"root": [item("a", folder=True), item("y")], "a": [item("x")]})
    directory.fail_with = TransportError("subfolder unavailable")
    directory.fail_on = {"a"}

    with pytest.raises(TransportError):
        fetch_snapshot_deep(directory, "root")


def test_deep_snapshot_detects_cycle_through_shared_folder():
    directory = FakeDirectory(
        {
            "root": [item("x", folder=True), item("a", folder=True)],
            "a": [item("x", folder=True)],
            "x": [item("a", folder=True)],
        }
    )

    with pytest.raises(FolderCycleError) as excinfo:
        fetch_snapshot_deep(directory, "root")

    assert excinfo.value.folder_id in {"a", "x"}


def test_non_numeric_size_skips_only_that_record():
    directory = FakeDirectory({"root": [item("good"), {**item("odd"), "size": "lots"}]})
    errors = []

    snapshot = fetch_snapshot(directory, "root", on_error=errors.append)

    assert list(snapshot) == ["good"]
    assert isinstance(errors[0], MalformedRecordError)
