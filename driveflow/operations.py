"""Higher-level Drive operations built from `DriveClient` calls."""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Literal

from driveflow.drive_client import DriveClient, escape_query_value
from driveflow.errors import DriveFlowError, DriveNotFoundError
from driveflow.mime import FOLDER_MIME_TYPE, MIME_TYPES, mime_label
from driveflow.models import FilePage


logger = logging.getLogger(__name__)

NOT_TRASHED = "trashed=false"

TYPE_ALIASES = {
    "pdf": MIME_TYPES["PDF"],
    "image": "image/",
    "video": "video/",
    "audio": "audio/",
    "document": MIME_TYPES["DOCUMENT"],
    "spreadsheet": MIME_TYPES["SPREADSHEET"],
    "presentation": MIME_TYPES["PRESENTATION"],
    "folder": FOLDER_MIME_TYPE,
}

LISTING_KINDS: dict[str, tuple[str, ...]] = {
    "pdfs": (MIME_TYPES["PDF"],),
    "images": (MIME_TYPES["JPEG"], MIME_TYPES["PNG"], MIME_TYPES["GIF"], MIME_TYPES["SVG"]),
    "videos": (MIME_TYPES["MP4"], MIME_TYPES["MKV"], MIME_TYPES["WEBM"], MIME_TYPES["AVI"]),
    "audios": (MIME_TYPES["MP3"], MIME_TYPES["WAV"]),
    "archives": (MIME_TYPES["ZIP"], MIME_TYPES["RAR"]),
    "json": (MIME_TYPES["JSON"],),
    "sheets": (MIME_TYPES["SPREADSHEET"],),
    "presentations": (MIME_TYPES["PRESENTATION"],),
    "docs": (MIME_TYPES["DOCUMENT"],),
}

CONVERSIONS: dict[str, str] = {
    "text-to-docs": MIME_TYPES["DOCUMENT"],
    "docs-to-pdf": MIME_TYPES["PDF"],
    "docs-to-word": MIME_TYPES["WORD"],
    "docs-to-text": MIME_TYPES["TEXT"],
    "csv-to-sheet": MIME_TYPES["SPREADSHEET"],
    "excel-to-sheet": MIME_TYPES["SPREADSHEET"],
    "sheet-to-csv": MIME_TYPES["CSV"],
    "sheet-to-pdf": MIME_TYPES["PDF"],
    "ppt-to-slides": MIME_TYPES["PRESENTATION"],
    "slides-to-ppt": MIME_TYPES["POWERPOINT"],
    "slides-to-pdf": MIME_TYPES["PDF"],
    "pdf-to-docs": MIME_TYPES["DOCUMENT"],
    "drawing-to-png": MIME_TYPES["PNG"],
    "drawing-to-pdf": MIME_TYPES["PDF"],
}


@dataclass(slots=True)
class BatchItemResult:
    key: str
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _mime_clause(mime_type: str) -> str:
    value = escape_query_value(mime_type)
    if mime_type.endswith("/"):
        return f"mimeType contains '{value}'"
    return f"mimeType='{value}'"


def _any_of(mime_types: Iterable[str]) -> str:
    clauses = [_mime_clause(mime) for mime in mime_types]
    return clauses[0] if len(clauses) == 1 else "(" + " or ".join(clauses) + ")"


# ---- search ----


def search_by_name(
    client: DriveClient,
    name: str,
    *,
    kind: Literal["file", "folder"] | None = None,
    match: Literal["exact", "contains"] = "exact",
) -> FilePage:
    value = escape_query_value(name)
    query = f"name='{value}'" if match == "exact" else f"name contains '{value}'"
    if kind == "folder":
        query += f" and mimeType='{FOLDER_MIME_TYPE}'"
    elif kind == "file":
        query += f" and mimeType!='{FOLDER_MIME_TYPE}'"
    return client.list_files(f"{query} and {NOT_TRASHED}")


def _first_id_by_name(client: DriveClient, name: str, kind: Literal["file", "folder"]) -> dict[str, Any]:
    files = search_by_name(client, name, kind=kind).files
    if not files:
        raise DriveNotFoundError(f"{kind.capitalize()} not found: {name}", status=404)
    return files[0]


def get_file_id_by_name(client: DriveClient, name: str) -> str:
    return _first_id_by_name(client, name, "file")["id"]


def get_folder_id_by_name(client: DriveClient, name: str) -> str:
    return _first_id_by_name(client, name, "folder")["id"]


def file_exists(client: DriveClient, name: str) -> bool:
    return bool(search_by_name(client, name, kind="file").files)


def search_by_type(client: DriveClient, type_name: str) -> FilePage:
    mime_type = TYPE_ALIASES.get(type_name.lower(), type_name)
    return client.list_files(f"{_mime_clause(mime_type)} and {NOT_TRASHED}")


def search_modified_after(client: DriveClient, date: str) -> FilePage:
    iso_date = date if "T" in date else f"{date}T00:00:00"
    return client.list_files(f"modifiedTime > '{iso_date}' and {NOT_TRASHED}", order_by="modifiedTime desc")


def search_starred(client: DriveClient) -> FilePage:
    return client.list_files(f"starred=true and {NOT_TRASHED}")


def search_shared(client: DriveClient) -> FilePage:
    return client.list_files(f"sharedWithMe=true and {NOT_TRASHED}")


def search_by_content(client: DriveClient, text: str) -> FilePage:
    return client.list_files(f"fullText contains '{escape_query_value(text)}' and {NOT_TRASHED}", order_by=None)


# ---- listing ----


def list_recent_files(client: DriveClient, days: int = 7, *, now: datetime | None = None) -> FilePage:
    since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    iso_date = since.strftime("%Y-%m-%dT%H:%M:%S")
    return client.list_files(
        f"modifiedTime > '{iso_date}' and {NOT_TRASHED}",
        order_by="modifiedTime desc",
        page_size=20,
    )


def list_by_kind(client: DriveClient, kind: str) -> FilePage:
    try:
        mime_types = LISTING_KINDS[kind]
    except KeyError:
        raise DriveFlowError(f"Unknown listing kind {kind!r}; choose from {', '.join(sorted(LISTING_KINDS))}") from None
    return client.list_files(f"{_any_of(mime_types)} and {NOT_TRASHED}")


def list_all_folders(client: DriveClient) -> list[dict[str, Any]]:
    return list(client.iter_files(f"mimeType='{FOLDER_MIME_TYPE}' and {NOT_TRASHED}"))


def list_folders_in_folder(client: DriveClient, folder_id: str) -> list[dict[str, Any]]:
    parent = escape_query_value(folder_id)
    return list(client.iter_files(f"'{parent}' in parents and mimeType='{FOLDER_MIME_TYPE}' and {NOT_TRASHED}"))


def list_files_in_folder(client: DriveClient, folder_id: str) -> list[dict[str, Any]]:
    return get_all_files_in_parent(client, folder_id)


def get_all_files_in_parent(client: DriveClient, parent_id: str) -> list[dict[str, Any]]:
    return list(client.iter_files(f"'{escape_query_value(parent_id)}' in parents and {NOT_TRASHED}"))


# ---- move / rename ----


def rename_file(client: DriveClient, file_id: str, new_name: str) -> dict[str, Any]:
    return client.update_metadata(file_id, {"name": new_name})


def move_file(client: DriveClient, file_id: str, new_folder_id: str) -> dict[str, Any]:
    meta = client.get_metadata(file_id, fields="id, parents")
    previous = ",".join(meta.get("parents") or [])
    return client.update_metadata(file_id, add_parents=new_folder_id, remove_parents=previous or None)


def move_file_by_name(client: DriveClient, file_name: str, folder_name: str) -> dict[str, Any]:
    file_id = get_file_id_by_name(client, file_name)
    folder_id = get_folder_id_by_name(client, folder_name)
    return move_file(client, file_id, folder_id)


# ---- batch ----


def _batch(keys: Iterable[str], action) -> list[BatchItemResult]:
    results: list[BatchItemResult] = []
    for key in keys:
        try:
            results.append(BatchItemResult(key=key, result=action(key)))
        except (DriveFlowError, OSError) as exc:
            logger.warning("Batch item %s failed: %s", key, exc)
            results.append(BatchItemResult(key=key, error=str(exc)))
    return results


def upload_multiple_files(
    client: DriveClient, file_paths: Iterable[Path], folder_id: str | None = None
) -> list[BatchItemResult]:
    paths = {str(path): Path(path) for path in file_paths}
    parents = [folder_id] if folder_id else None
    return _batch(paths, lambda key: client.upload_file(paths[key], parents=parents))


def delete_multiple_files(client: DriveClient, file_ids: Iterable[str]) -> list[BatchItemResult]:
    return _batch(file_ids, client.delete_file)


def download_multiple_files(client: DriveClient, downloads: dict[str, Path]) -> list[BatchItemResult]:
    return _batch(downloads, lambda file_id: client.download_file(file_id, downloads[file_id]))


# ---- analysis ----


def file_type_breakdown(client: DriveClient, parent_id: str = "root") -> dict[str, int]:
    counts = Counter(mime_label(item.get("mimeType")) for item in get_all_files_in_parent(client, parent_id))
    return dict(sorted(counts.items(), key=lambda pair: (-pair[1], pair[0])))


def find_duplicates(client: DriveClient) -> dict[tuple[str, str], list[dict[str, Any]]]:
    """Items sharing a name and MIME type across the whole drive."""
    groups: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
    for item in client.iter_files(NOT_TRASHED, order_by="name"):
        groups[(str(item.get("name", "")), str(item.get("mimeType", "")))].append(item)
    return {key: items for key, items in sorted(groups.items()) if len(items) > 1}


# ---- conversion ----


def convert_file(client: DriveClient, file_id: str, conversion: str) -> dict[str, Any]:
    try:
        target = CONVERSIONS[conversion]
    except KeyError:
        raise DriveFlowError(
            f"Unknown conversion {conversion!r}; choose from {', '.join(sorted(CONVERSIONS))}"
        ) from None
    return client.convert(file_id, target)
