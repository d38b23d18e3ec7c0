import json

import pytest

from driveflow.errors import JsonDocumentError
from driveflow.json_docs import (
    add_json_key_value,
    delete_json_key,
    delete_path,
    get_path,
    parse_document,
    push_json_object_to_array,
    push_to_array,
    rename_or_update,
    set_path,
    split_path,
    update_json_key,
)


class FakeJsonClient:
    def __init__(self, doc):
        self.text = json.dumps(doc)
        self.updates = []

    def read_file_data(self, file_id, *, as_text=True):
        return self.text

    def update_json_content(self, file_id, data):
        self.updates.append((file_id, data))
        self.text = json.dumps(data)
        return {"id": file_id}


def test_split_path_rejects_empty_segments():
    assert split_path("a.b.0") == ["a", "b", "0"]
    for bad in ("", "a..b", ".a", "a."):
        with pytest.raises(JsonDocumentError):
            split_path(bad)


def test_set_path_creates_intermediate_objects():
    doc = {"user": {"name": "ann"}}
    set_path(doc, "user.profile.age", 41)
    set_path(doc, "tags", [])
    set_path(doc, "tags.0", "first")
    assert doc == {"user": {"name": "ann", "profile": {"age": 41}}, "tags": ["first"]}


def test_set_path_array_index_out_of_range():
    with pytest.raises(JsonDocumentError):
        set_path({"items": [1]}, "items.5", 2)


def test_get_path_with_default():
    doc = {"items": [{"id": 1}, {"id": 2}]}
    assert get_path(doc, "items.1.id") == 2
    assert get_path(doc, "items.9.id", None) is None
    with pytest.raises(JsonDocumentError):
        get_path(doc, "missing")


def test_push_to_array_creates_or_appends():
    doc = {}
    push_to_array(doc, "events", {"n": 1})
    push_to_array(doc, "events", {"n": 2})
    assert doc == {"events": [{"n": 1}, {"n": 2}]}

    with pytest.raises(JsonDocumentError):
        push_to_array({"events": "nope"}, "events", 1)


def test_delete_path_object_and_array():
    doc = {"a": {"b": 1, "c": 2}, "list": [1, 2, 3]}
    delete_path(doc, "a.b")
    delete_path(doc, "list.0")
    assert doc == {"a": {"c": 2}, "list": [2, 3]}

    with pytest.raises(JsonDocumentError):
        delete_path(doc, "a.zzz")
    with pytest.raises(JsonDocumentError):
        delete_path(doc, "nope.b")


def test_rename_keeps_key_order():
    doc = {"first": 1, "middle": 2, "last": 3}
    rename_or_update(doc, "middle", new_key="center")
    assert list(doc) == ["first", "center", "last"]
    assert doc["center"] == 2


def test_update_value_and_rename_together():
    doc = {"cfg": {"old": 1}}
    rename_or_update(doc, "cfg.old", new_key="new", new_value={"x": True})
    assert doc == {"cfg": {"new": {"x": True}}}


def test_rename_onto_existing_key_fails():
    with pytest.raises(JsonDocumentError, match="already exists"):
        rename_or_update({"a": 1, "b": 2}, "a", new_key="b")


def test_parse_document_errors():
    assert parse_document(b'{"a": 1}') == {"a": 1}
    with pytest.raises(JsonDocumentError):
        parse_document("{not json")


def test_remote_edits_write_back_whole_document():
    client = FakeJsonClient({"name": "drive", "items": []})

    add_json_key_value(client, "f1", "meta.owner", "ann")
    push_json_object_to_array(client, "f1", "items", {"id": 1})
    update_json_key(client, "f1", "name", new_key="title")
    delete_json_key(client, "f1", "meta.owner")

    assert json.loads(client.text) == {"title": "drive", "items": [{"id": 1}], "meta": {}}
    assert [file_id for file_id, _ in client.updates] == ["f1"] * 4


def test_remote_edit_requires_object_document():
    client = FakeJsonClient([1, 2, 3])
    with pytest.raises(JsonDocumentError):
        add_json_key_value(client, "f1", "a", 1)
    assert client.updates == []
