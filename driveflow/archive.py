from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Callable, Iterable

import pyzipper

from driveflow.errors import ConfigurationError
from driveflow.mime import EXPORT_FORMATS, FOLDER_MIME_TYPE, is_google_native
from driveflow.snapshot import record_from_item, walk_folder

if TYPE_CHECKING:
    from driveflow.drive_client import DriveClient


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ArchiveResult:
    zip_path: Path
    archived_paths: list[str] = field(default_factory=list)
    skipped_paths: list[str] = field(default_factory=list)
    total_bytes: int = 0
    uploaded: dict[str, Any] | None = None


class _NameAllocator:
    def __init__(self) -> None:
        self._used: set[str] = set()

    def allocate(self, path: str) -> str:
        candidate = path
        counter = 1
        pure = PurePosixPath(path)
        while candidate in self._used:
            candidate = str(pure.with_name(f"{pure.stem} ({counter}){pure.suffix}"))
            counter += 1
        self._used.add(candidate)
        return candidate


def _safe_name(name: str) -> str:
    return name.replace("/", "_").replace("\\", "_").strip() or "untitled"


def _write_entry(
    client: "DriveClient",
    archive: zipfile.ZipFile,
    result: ArchiveResult,
    names: _NameAllocator,
    *,
    file_id: str,
    path: str,
    mime_type: str | None,
    on_progress: Callable[[str, int], None] | None,
) -> None:
    export_mime: str | None = None
    if is_google_native(mime_type):
        export = EXPORT_FORMATS.get(mime_type or "")
        if export is None:
            logger.warning("Skipping %s: %s cannot be exported", path, mime_type)
            result.skipped_paths.append(path)
            return
        export_mime, suffix = export
        path = f"{path}{suffix}"

    arcname = names.allocate(path)
    with archive.open(arcname, "w", force_zip64=True) as entry:
        for chunk in client.iter_file_chunks(file_id, export_mime=export_mime):
            entry.write(chunk)
            result.total_bytes += len(chunk)
            if on_progress is not None:
                on_progress(arcname, len(chunk))
    result.archived_paths.append(arcname)


def _archive_folder(
    client: "DriveClient",
    archive: zipfile.ZipFile,
    result: ArchiveResult,
    names: _NameAllocator,
    folder_id: str,
    prefix: str,
    on_progress: Callable[[str, int], None] | None,
) -> None:
    folder_paths: dict[str, str] = {folder_id: prefix}
    for record, lineage in walk_folder(client, folder_id):
        parent_path = folder_paths.get(lineage[-1], prefix)
        path = f"{parent_path}/{_safe_name(record.name)}" if parent_path else _safe_name(record.name)
        if record.is_folder:
            folder_paths.setdefault(record.id, path)
            continue
        _write_entry(
            client,
            archive,
            result,
            names,
            file_id=record.id,
            path=path,
            mime_type=record.mime_type,
            on_progress=on_progress,
        )


def _open_archive(zip_path: Path, password: str | None) -> zipfile.ZipFile:
    if not password:
        return zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED)
    archive = pyzipper.AESZipFile(
        zip_path, "w", compression=pyzipper.ZIP_DEFLATED, encryption=pyzipper.WZ_AES
    )
    archive.setpassword(password.encode("utf-8"))
    return archive


def archive_to_zip(
    client: "DriveClient",
    zip_path: Path,
    *,
    folder_id: str | None = None,
    file_ids: Iterable[str] = (),
    upload_to_folder_id: str | None = None,
    password: str | None = None,
    on_progress: Callable[[str, int], None] | None = None,
) -> ArchiveResult:
    """Stream remote files into a local zip, optionally encrypted and uploaded.

    With a password every entry is AES-256 encrypted, readable by
    7-Zip, WinZip and pyzipper but not by the stdlib zipfile module.
    """
    file_ids = list(file_ids)
    if not folder_id and not file_ids:
        raise ConfigurationError("Nothing to archive: pass a folder id or file ids")

    zip_path.parent.mkdir(parents=True, exist_ok=True)
    result = ArchiveResult(zip_path=zip_path)
    names = _NameAllocator()

    with _open_archive(zip_path, password) as archive:
        if folder_id:
            _archive_folder(client, archive, result, names, folder_id, "", on_progress)
        for file_id in file_ids:
            meta = client.get_metadata(file_id)
            record = record_from_item({**meta, "modifiedTime": meta.get("modifiedTime") or "-"})
            name = _safe_name(record.name)
            if meta.get("mimeType") == FOLDER_MIME_TYPE:
                _archive_folder(client, archive, result, names, file_id, name, on_progress)
            else:
                _write_entry(
                    client,
                    archive,
                    result,
                    names,
                    file_id=file_id,
                    path=name,
                    mime_type=record.mime_type,
                    on_progress=on_progress,
                )

    logger.info("Archived %d file(s), %d byte(s) into %s", len(result.archived_paths), result.total_bytes, zip_path)
    if upload_to_folder_id:
        result.uploaded = client.upload_file(zip_path, parents=[upload_to_folder_id], mime_type="application/zip")
    return result
