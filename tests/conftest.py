from __future__ import annotations

import threading
from typing import Any

import pytest

from driveflow.mime import FOLDER_MIME_TYPE
from driveflow.models import FilePage


def item(file_id: str, name: str | None = None, modified: str = "2024-01-01T00:00:00.000Z", *, folder: bool = False):
    return {
        "id": file_id,
        "name": name or file_id,
        "mimeType": FOLDER_MIME_TYPE if folder else "text/plain",
        "modifiedTime": modified,
    }


class FakeDirectory:
    """In-memory folder tree answering `list_children` like the Drive API."""

    def __init__(self, tree: dict[str, list[Any]] | None = None, *, page_size: int = 100) -> None:
        self.tree: dict[str, list[Any]] = tree or {}
        self.page_size = page_size
        self.calls: list[tuple[str, str | None]] = []
        self.fail_with: Exception | None = None
        self.fail_on: set[str] = set()
        self.block: threading.Event | None = None
        self._lock = threading.Lock()

    def list_children(self, folder_id: str, page_token: str | None = None) -> FilePage:
        with self._lock:
            self.calls.append((folder_id, page_token))
        if self.block is not None:
            self.block.wait(5)
        if self.fail_with is not None and (not self.fail_on or folder_id in self.fail_on):
            raise self.fail_with

        children = list(self.tree.get(folder_id, []))
        start = int(page_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(children) else None
        return FilePage(files=children[start:end], next_page_token=next_token)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()
