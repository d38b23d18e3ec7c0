import zipfile

import pytest
import pyzipper

from conftest import FakeDirectory, item
from driveflow.archive import archive_to_zip
from driveflow.errors import ConfigurationError
from driveflow.mime import MIME_TYPES


class FakeArchiveClient(FakeDirectory):
    def __init__(self, tree, contents, metadata=None):
        super().__init__(tree)
        self.contents = contents
        self.metadata = metadata or {}
        self.exports = []
        self.uploads = []

    def iter_file_chunks(self, file_id, *, export_mime=None):
        if export_mime:
            self.exports.append((file_id, export_mime))
        data = self.contents[file_id]
        yield data[:2]
        yield data[2:]

    def get_metadata(self, file_id):
        return self.metadata[file_id]

    def upload_file(self, path, *, parents=None, mime_type=None):
        self.uploads.append((path.name, parents, mime_type))
        return {"id": "uploaded-zip"}


def native(file_id, name, mime):
    return {**item(file_id, name), "mimeType": mime}


def test_archives_folder_tree_with_paths(tmp_path):
    client = FakeArchiveClient(
        {
            "root": [item("sub", "Sub", folder=True), item("a", "a.txt"), item("a2", "a.txt")],
            "sub": [item("b", "b.txt"), native("doc", "Plan", MIME_TYPES["DOCUMENT"])],
        },
        {"a": b"alpha", "a2": b"second", "b": b"bravo", "doc": b"docx-bytes"},
    )
    progress = []

    result = archive_to_zip(client, tmp_path / "out.zip", folder_id="root", on_progress=lambda n, d: progress.append(d))

    with zipfile.ZipFile(tmp_path / "out.zip") as archive:
        assert sorted(archive.namelist()) == ["Sub/Plan.docx", "Sub/b.txt", "a (1).txt", "a.txt"]
        assert archive.read("Sub/b.txt") == b"bravo"
        assert archive.read("a (1).txt") == b"second"
    assert client.exports == [("doc", MIME_TYPES["WORD"])]
    assert result.total_bytes == sum(progress) == len(b"alphasecondbravodocx-bytes")
    assert result.skipped_paths == []


def test_non_exportable_native_files_are_skipped(tmp_path):
    client = FakeArchiveClient(
        {"root": [native("form", "Survey", "application/vnd.google-apps.form"), item("a", "a.txt")]},
        {"a": b"alpha"},
    )

    result = archive_to_zip(client, tmp_path / "out.zip", folder_id="root")

    assert result.archived_paths == ["a.txt"]
    assert result.skipped_paths == ["Survey"]


def test_archives_selected_files_and_uploads(tmp_path):
    client = FakeArchiveClient(
        {},
        {"x": b"xray"},
        metadata={"x": {"id": "x", "name": "x.bin", "mimeType": "application/octet-stream"}},
    )

    result = archive_to_zip(client, tmp_path / "sel.zip", file_ids=["x"], upload_to_folder_id="dest")

    assert result.archived_paths == ["x.bin"]
    assert result.uploaded == {"id": "uploaded-zip"}
    assert client.uploads == [("sel.zip", ["dest"], "application/zip")]


def test_nothing_to_archive(tmp_path):
    with pytest.raises(ConfigurationError):
        archive_to_zip(FakeArchiveClient({}, {}), tmp_path / "empty.zip")


def test_password_encrypts_every_entry(tmp_path):
    client = FakeArchiveClient(
        {"root": [item("sub", "Sub", folder=True), item("a", "a.txt")], "sub": [item("b", "b.txt")]},
        {"a": b"alpha", "b": b"bravo"},
    )

    archive_to_zip(client, tmp_path / "locked.zip", folder_id="root", password="hunter2")

    with pyzipper.AESZipFile(tmp_path / "locked.zip") as archive:
        assert all(info.flag_bits & 0x1 for info in archive.infolist())
        archive.setpassword(b"hunter2")
        assert archive.read("a.txt") == b"alpha"
        assert archive.read("Sub/b.txt") == b"bravo"

    with pyzipper.AESZipFile(tmp_path / "locked.zip") as archive:
        archive.setpassword(b"wrong")
        with pytest.raises(RuntimeError):
            archive.read("a.txt")
