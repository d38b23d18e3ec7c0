from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from driveflow.models import ChangeEvent, FileRecord, Snapshot
from driveflow.state_db import load_snapshot, save_snapshot


@dataclass(slots=True)
class StatusResult:
    new_files: list[FileRecord]
    modified_files: list[FileRecord]
    deleted_files: list[FileRecord]
    snapshot_count: int

    @property
    def has_changes(self) -> bool:
        return bool(self.new_files or self.modified_files or self.deleted_files)

    def events(self) -> list[ChangeEvent]:
        """Added, then modified, then deleted; each group by id ascending."""
        return (
            [ChangeEvent("added", record) for record in self.new_files]
            + [ChangeEvent("modified", record) for record in self.modified_files]
            + [ChangeEvent("deleted", record) for record in self.deleted_files]
        )


def diff_records(previous: Snapshot, current: Snapshot) -> StatusResult:
    new_files: list[FileRecord] = []
    modified_files: list[FileRecord] = []
    deleted_files: list[FileRecord] = []

    for file_id, record in current.items():
        old = previous.get(file_id)
        if old is None:
            new_files.append(record)
            continue
        if old.last_modified != record.last_modified:
            modified_files.append(record)

    for file_id, record in previous.items():
        if file_id not in current:
            deleted_files.append(record)

    return StatusResult(
        new_files=sorted(new_files, key=lambda r: r.id),
        modified_files=sorted(modified_files, key=lambda r: r.id),
        deleted_files=sorted(deleted_files, key=lambda r: r.id),
        snapshot_count=len(current),
    )


def diff(previous: Snapshot, current: Snapshot) -> list[ChangeEvent]:
    return diff_records(previous, current).events()


async def compute_status(
    db_path: Path,
    root_id: str,
    current: Snapshot,
    *,
    previous: Snapshot | None = None,
) -> StatusResult:
    if previous is None:
        previous = await load_snapshot(db_path, root_id)
    return diff_records(previous, current)


async def compute_and_refresh_status(db_path: Path, root_id: str, current: Snapshot) -> StatusResult:
    result = await compute_status(db_path, root_id, current)
    await save_snapshot(db_path, root_id, current)
    return result
