"""Building point-in-time snapshots of a remote folder."""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Iterator, Protocol

from driveflow.errors import FolderCycleError, MalformedRecordError, TransportError
from driveflow.models import FileKind, FilePage, FileRecord, Snapshot


logger = logging.getLogger(__name__)

ErrorReporter = Callable[[Exception], None]


class DirectoryLister(Protocol):
    def list_children(self, folder_id: str, page_token: str | None = None) -> FilePage:
        ...


def record_from_item(item: Any, parent_id: str | None = None) -> FileRecord:
    if not isinstance(item, dict):
        raise MalformedRecordError(f"Listed item is not an object: {item!r}", item)
    file_id = item.get("id")
    modified = item.get("modifiedTime")
    if not file_id or not isinstance(file_id, str):
        raise MalformedRecordError("Listed item has no id", item)
    if not modified or not isinstance(modified, str):
        raise MalformedRecordError(f"Listed item {file_id} has no modifiedTime", item)

    parents = item.get("parents")
    if parent_id is None and isinstance(parents, list) and parents:
        parent_id = str(parents[0])
    size = item.get("size")
    if size is not None:
        try:
            size = int(size)
        except (TypeError, ValueError):
            raise MalformedRecordError(f"Listed item {file_id} has a non-numeric size {size!r}", item) from None
    mime_type = item.get("mimeType")
    return FileRecord(
        id=file_id,
        name=str(item.get("name") or ""),
        kind=FileKind.from_mime_type(mime_type),
        last_modified=modified,
        parent_id=parent_id,
        mime_type=mime_type,
        size=size,
    )


def iter_child_items(lister: DirectoryLister, folder_id: str) -> Iterator[Any]:
    """Yield every raw child of a folder, following page tokens to the end."""
    page_token: str | None = None
    seen_tokens: set[str] = set()
    while True:
        page = lister.list_children(folder_id, page_token)
        yield from page.files
        if not page.next_page_token:
            return
        if page.next_page_token in seen_tokens:
            raise TransportError(f"Listing of {folder_id} repeated page token {page.next_page_token!r}")
        seen_tokens.add(page.next_page_token)
        page_token = page.next_page_token


def _report(on_error: ErrorReporter | None, exc: MalformedRecordError) -> None:
    logger.warning("Skipping malformed record: %s", exc)
    if on_error is not None:
        on_error(exc)


def list_folder_records(
    lister: DirectoryLister,
    folder_id: str,
    *,
    on_error: ErrorReporter | None = None,
) -> list[FileRecord]:
    records: list[FileRecord] = []
    for item in iter_child_items(lister, folder_id):
        try:
            records.append(record_from_item(item, parent_id=folder_id))
        except MalformedRecordError as exc:
            _report(on_error, exc)
    return records


def fetch_snapshot(
    lister: DirectoryLister,
    folder_id: str,
    *,
    on_error: ErrorReporter | None = None,
) -> Snapshot:
    """Direct children of `folder_id`. Listing errors propagate; nothing partial is returned."""
    return {record.id: record for record in list_folder_records(lister, folder_id, on_error=on_error)}


def _is_ancestor(parents: dict[str, set[str]], candidate: str, folder_id: str) -> bool:
    """True when `candidate` is `folder_id` or sits above it on any parent edge seen so far."""
    stack = [folder_id]
    visited: set[str] = set()
    while stack:
        current = stack.pop()
        if current == candidate:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(parents.get(current, ()))
    return False


def walk_folder(
    lister: DirectoryLister,
    folder_id: str,
    *,
    on_error: ErrorReporter | None = None,
    max_depth: int | None = None,
) -> Iterator[tuple[FileRecord, tuple[str, ...]]]:
    """Breadth-first walk yielding (record, ancestor folder ids) for the whole subtree.

    A folder reachable from two parents is descended once. A folder that lists
    one of its own ancestors, through any parent path seen so far, raises
    FolderCycleError.
    """
    pending: deque[tuple[str, tuple[str, ...]]] = deque([(folder_id, ())])
    expanded: set[str] = set()
    parents: dict[str, set[str]] = {}

    while pending:
        current_id, ancestors = pending.popleft()
        if current_id in expanded:
            continue
        expanded.add(current_id)
        lineage = (*ancestors, current_id)

        for record in list_folder_records(lister, current_id, on_error=on_error):
            yield record, lineage
            if not record.is_folder:
                continue
            if _is_ancestor(parents, record.id, current_id):
                raise FolderCycleError(record.id, lineage)
            parents.setdefault(record.id, set()).add(current_id)
            if max_depth is not None and len(lineage) >= max_depth:
                continue
            pending.append((record.id, lineage))


def fetch_snapshot_deep(
    lister: DirectoryLister,
    folder_id: str,
    *,
    on_error: ErrorReporter | None = None,
    max_depth: int | None = None,
) -> Snapshot:
    """Whole subtree under `folder_id`, flattened and keyed by id."""
    snapshot: Snapshot = {}
    for record, _ in walk_folder(lister, folder_id, on_error=on_error, max_depth=max_depth):
        snapshot.setdefault(record.id, record)
    return snapshot
