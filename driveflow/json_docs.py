"""Dot-path edits on JSON documents, locally or stored in Drive.

Paths use dots to separate segments ("user.profile.name"); a segment made
of digits indexes into a list.
"""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from driveflow.errors import JsonDocumentError

if TYPE_CHECKING:
    from driveflow.drive_client import DriveClient


logger = logging.getLogger(__name__)

_MISSING = object()


def split_path(path: str) -> list[str]:
    parts = path.split(".") if path else []
    if not parts or any(part == "" for part in parts):
        raise JsonDocumentError(f"Invalid key path: {path!r}")
    return parts


def _list_index(container: list[Any], segment: str, path: str, *, allow_end: bool = False) -> int:
    if not segment.isdigit():
        raise JsonDocumentError(f"Invalid array index {segment!r} in {path!r}")
    index = int(segment)
    limit = len(container) + 1 if allow_end else len(container)
    if index >= limit:
        raise JsonDocumentError(f"Array index {index} out of range in {path!r}")
    return index


def _child(container: Any, segment: str, path: str) -> Any:
    if isinstance(container, list):
        return container[_list_index(container, segment, path)]
    if isinstance(container, dict):
        if segment not in container:
            raise JsonDocumentError(f"Key path {path!r} does not exist")
        return container[segment]
    raise JsonDocumentError(f"Key path {path!r} does not exist")


def _resolve_parent(doc: Any, parts: list[str], path: str, *, create: bool) -> Any:
    current = doc
    for segment in parts[:-1]:
        if create and isinstance(current, dict):
            value = current.get(segment)
            if not isinstance(value, (dict, list)):
                value = {}
                current[segment] = value
            current = value
            continue
        current = _child(current, segment, path)
        if not isinstance(current, (dict, list)):
            raise JsonDocumentError(f"Key path {path!r} does not exist")
    return current


def get_path(doc: Any, path: str, default: Any = _MISSING) -> Any:
    current = doc
    try:
        for segment in split_path(path):
            current = _child(current, segment, path)
    except JsonDocumentError:
        if default is _MISSING:
            raise
        return default
    return current


def set_path(doc: dict[str, Any], path: str, value: Any) -> dict[str, Any]:
    """Add or overwrite a value, creating intermediate objects."""
    parts = split_path(path)
    parent = _resolve_parent(doc, parts, path, create=True)
    last = parts[-1]
    if isinstance(parent, list):
        index = _list_index(parent, last, path, allow_end=True)
        if index == len(parent):
            parent.append(value)
        else:
            parent[index] = value
    else:
        parent[last] = value
    return doc


def push_to_array(doc: dict[str, Any], path: str, item: Any) -> dict[str, Any]:
    parts = split_path(path)
    parent = _resolve_parent(doc, parts, path, create=True)
    last = parts[-1]
    if isinstance(parent, list):
        target = parent[_list_index(parent, last, path)]
    else:
        target = parent.setdefault(last, [])
    if not isinstance(target, list):
        raise JsonDocumentError(f"Value at {path!r} is not an array")
    target.append(item)
    return doc


def delete_path(doc: dict[str, Any], path: str) -> dict[str, Any]:
    parts = split_path(path)
    parent = _resolve_parent(doc, parts, path, create=False)
    last = parts[-1]
    if isinstance(parent, list):
        del parent[_list_index(parent, last, path)]
    elif last in parent:
        del parent[last]
    else:
        raise JsonDocumentError(f"Key {last!r} does not exist")
    return doc


def rename_or_update(
    doc: dict[str, Any],
    path: str,
    new_key: str | None = None,
    new_value: Any = _MISSING,
) -> dict[str, Any]:
    """Rename the key at `path` and/or replace its value, keeping key order."""
    parts = split_path(path)
    parent = _resolve_parent(doc, parts, path, create=False)
    old_key = parts[-1]
    if not isinstance(parent, dict):
        raise JsonDocumentError(f"Cannot rename an array element at {path!r}")
    if old_key not in parent:
        raise JsonDocumentError(f"Key {old_key!r} does not exist")

    final_value = parent[old_key] if new_value is _MISSING else new_value
    final_key = new_key or old_key
    if final_key != old_key and final_key in parent:
        raise JsonDocumentError(f"Key {final_key!r} already exists")

    rebuilt = {(final_key if key == old_key else key): (final_value if key == old_key else value)
               for key, value in parent.items()}
    parent.clear()
    parent.update(rebuilt)
    return doc


def parse_document(text: str | bytes) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise JsonDocumentError("Invalid JSON format in file") from exc


# ---- remote read-modify-write ----


def read_json(client: "DriveClient", file_id: str) -> Any:
    return parse_document(client.read_file_data(file_id, as_text=True))


def _patch_remote(client: "DriveClient", file_id: str, patch) -> dict[str, Any]:
    doc = read_json(client, file_id)
    if not isinstance(doc, dict):
        raise JsonDocumentError(f"JSON file {file_id} does not hold an object")
    patch(doc)
    result = client.update_json_content(file_id, doc)
    logger.debug("Updated JSON document %s", file_id)
    return result


def add_json_key_value(client: "DriveClient", file_id: str, path: str, value: Any) -> dict[str, Any]:
    return _patch_remote(client, file_id, lambda doc: set_path(doc, path, value))


def push_json_object_to_array(client: "DriveClient", file_id: str, path: str, item: Any) -> dict[str, Any]:
    return _patch_remote(client, file_id, lambda doc: push_to_array(doc, path, item))


def delete_json_key(client: "DriveClient", file_id: str, path: str) -> dict[str, Any]:
    return _patch_remote(client, file_id, lambda doc: delete_path(doc, path))


def update_json_key(
    client: "DriveClient",
    file_id: str,
    path: str,
    new_key: str | None = None,
    new_value: Any = _MISSING,
) -> dict[str, Any]:
    return _patch_remote(client, file_id, lambda doc: rename_or_update(doc, path, new_key, new_value))
