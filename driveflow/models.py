from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from driveflow.mime import FOLDER_MIME_TYPE


class FileKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"

    @classmethod
    def from_mime_type(cls, mime_type: str | None) -> "FileKind":
        return cls.FOLDER if mime_type == FOLDER_MIME_TYPE else cls.FILE


@dataclass(slots=True, frozen=True)
class FileRecord:
    id: str
    name: str
    kind: FileKind
    last_modified: str
    parent_id: str | None = None
    mime_type: str | None = None
    size: int | None = None

    @property
    def is_folder(self) -> bool:
        return self.kind is FileKind.FOLDER


ChangeType = Literal["added", "modified", "deleted"]


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    type: ChangeType
    file: FileRecord


@dataclass(slots=True)
class FilePage:
    files: list[dict[str, Any]]
    next_page_token: str | None = None


# id -> record; a new mapping is built every poll cycle
Snapshot = dict[str, FileRecord]
