from __future__ import annotations

import io
import json
import logging
import mimetypes
import socket
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

import httplib2
from google.auth.exceptions import RefreshError, TransportError as AuthTransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload, MediaIoBaseUpload

from driveflow.auth import TokenStore, load_client_secrets
from driveflow.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from driveflow.errors import (
    ConfigurationError,
    DriveAccessDeniedError,
    DriveNotFoundError,
    DriveRateLimitError,
    TransportError,
)
from driveflow.mime import EXTENSIONS, FOLDER_MIME_TYPE, MIME_TYPES, is_google_native
from driveflow.models import FilePage


FILE_FIELDS = "id, name, mimeType, size, createdTime, modifiedTime, parents, webViewLink"
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"
CHILD_FIELDS = "nextPageToken, files(id, name, mimeType, size, modifiedTime, parents)"
DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_CHUNK_SIZE = 1024 * 1024
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
T = TypeVar("T")

logger = logging.getLogger(__name__)


def _iter_exception_chain(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _http_status(exc: BaseException) -> int | None:
    if isinstance(exc, HttpError):
        status = getattr(exc, "status_code", None) or getattr(exc.resp, "status", None)
        return int(status) if status is not None else None
    return None


def _is_timeout_error(exc: BaseException) -> bool:
    for current in _iter_exception_chain(exc):
        if isinstance(current, (socket.timeout, TimeoutError)):
            return True
        message = str(current).lower()
        if "timed out" in message or "timeout" in message:
            return True
    return False


def _is_retryable(exc: BaseException) -> bool:
    return _http_status(exc) in RETRYABLE_STATUSES or _is_timeout_error(exc)


def _translate_error(exc: Exception, operation: str) -> TransportError:
    status = _http_status(exc)
    if status == 404:
        return DriveNotFoundError(f"{operation}: not found", status=status)
    if status in (401, 403) or isinstance(exc, RefreshError):
        return DriveAccessDeniedError(f"{operation}: access denied ({exc})", status=status)
    if status == 429:
        return DriveRateLimitError(f"{operation}: rate limit exceeded", status=status)
    return TransportError(f"{operation} failed: {exc}", status=status)


def _retry_transient(
    func: Callable[[], T],
    *,
    operation: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 1.0,
) -> T:
    attempt = 1
    while True:
        try:
            return func()
        except (HttpError, RefreshError, AuthTransportError, httplib2.HttpLib2Error, OSError) as exc:
            if attempt >= max_attempts or not _is_retryable(exc):
                raise _translate_error(exc, operation) from exc
            sleep_seconds = base_delay_seconds * (2 ** (attempt - 1))
            logger.debug("%s failed (attempt %d), retrying in %.1fs: %s", operation, attempt, sleep_seconds, exc)
            time.sleep(sleep_seconds)
            attempt += 1


def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Thin wrapper over the Drive v3 `files` API.

    Each thread gets its own `googleapiclient` service because httplib2
    connections are not thread-safe.
    """

    def __init__(
        self,
        credentials: Credentials | None,
        *,
        token_store: TokenStore | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        service_factory: Callable[[], Any] | None = None,
        retry_base_delay: float = 1.0,
    ) -> None:
        if credentials is None and service_factory is None:
            raise ConfigurationError("DriveClient needs credentials or a service factory")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        self._credentials = credentials
        self._token_store = token_store
        self._timeout = timeout
        self._service_factory = service_factory or self._build_service
        self._local = threading.local()
        self._retry_base_delay = retry_base_delay
        self.page_size = page_size

    @classmethod
    def from_files(
        cls,
        credentials_path: Path,
        tokens_path: Path,
        **kwargs: Any,
    ) -> "DriveClient":
        secrets = load_client_secrets(credentials_path)
        token_store = TokenStore(tokens_path)
        return cls(token_store.load(secrets), token_store=token_store, **kwargs)

    def _build_service(self):
        http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self._timeout))
        return build("drive", "v3", http=http, cache_discovery=False)

    @property
    def service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service

    def _run(self, operation: str, func: Callable[[], T]) -> T:
        result = _retry_transient(func, operation=operation, base_delay_seconds=self._retry_base_delay)
        if self._token_store is not None and self._credentials is not None:
            self._token_store.save_if_refreshed(self._credentials)
        return result

    def _execute(self, operation: str, build_request: Callable[[Any], Any]) -> Any:
        return self._run(operation, lambda: build_request(self.service.files()).execute())

    # ---- listing ----

    def list_files(
        self,
        query: str | None = None,
        *,
        page_size: int | None = None,
        page_token: str | None = None,
        order_by: str | None = "modifiedTime desc",
        fields: str = LIST_FIELDS,
    ) -> FilePage:
        params: dict[str, Any] = {
            "pageSize": page_size or self.page_size,
            "fields": fields,
            "supportsAllDrives": True,
            "includeItemsFromAllDrives": True,
        }
        if query:
            params["q"] = query
        if order_by:
            params["orderBy"] = order_by
        if page_token:
            params["pageToken"] = page_token

        response = self._execute("list_files", lambda files: files.list(**params))
        return FilePage(
            files=list(response.get("files") or []),
            next_page_token=response.get("nextPageToken") or None,
        )

    def iter_files(self, query: str | None = None, *, order_by: str | None = None) -> Iterator[dict[str, Any]]:
        page_token: str | None = None
        while True:
            page = self.list_files(query, page_token=page_token, order_by=order_by)
            yield from page.files
            if not page.next_page_token:
                return
            page_token = page.next_page_token

    def list_children(self, folder_id: str, page_token: str | None = None) -> FilePage:
        query = f"'{escape_query_value(folder_id)}' in parents and trashed=false"
        return self.list_files(query, page_token=page_token, order_by=None, fields=CHILD_FIELDS)

    # ---- metadata ----

    def get_metadata(self, file_id: str, fields: str = FILE_FIELDS) -> dict[str, Any]:
        return self._execute(
            f"get_metadata:{file_id}",
            lambda files: files.get(fileId=file_id, fields=fields, supportsAllDrives=True),
        )

    def get_complete_metadata(self, file_id: str) -> dict[str, Any]:
        return self.get_metadata(file_id, fields="*")

    def get_image_metadata(self, file_id: str) -> dict[str, Any]:
        meta = self.get_metadata(file_id, fields="id, name, mimeType, imageMediaMetadata")
        return meta.get("imageMediaMetadata") or {}

    def get_video_metadata(self, file_id: str) -> dict[str, Any]:
        meta = self.get_metadata(file_id, fields="id, name, mimeType, videoMediaMetadata")
        return meta.get("videoMediaMetadata") or {}

    # ---- content ----

    def iter_file_chunks(
        self,
        file_id: str,
        *,
        export_mime: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> Iterator[bytes]:
        files = self.service.files()
        if export_mime:
            request = files.export_media(fileId=file_id, mimeType=export_mime)
        else:
            request = files.get_media(fileId=file_id, supportsAllDrives=True)

        buffer = io.BytesIO()
        downloader = MediaIoBaseDownload(buffer, request, chunksize=chunk_size)
        done = False
        while not done:
            _, done = self._run(f"download:{file_id}", downloader.next_chunk)
            data = buffer.getvalue()
            buffer.seek(0)
            buffer.truncate()
            if data:
                yield data

    def read_file_data(self, file_id: str, *, as_text: bool = True) -> str | bytes:
        data = b"".join(self.iter_file_chunks(file_id))
        return data.decode("utf-8") if as_text else data

    def download_file(
        self,
        file_id: str,
        dest_path: Path,
        *,
        export_mime: str | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> Path:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        partial = dest_path.with_name(dest_path.name + ".part")
        try:
            with partial.open("wb") as fh:
                for chunk in self.iter_file_chunks(file_id, export_mime=export_mime):
                    fh.write(chunk)
                    if on_progress is not None:
                        on_progress(len(chunk))
            partial.replace(dest_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return dest_path

    def upload_file(
        self,
        file_path: Path,
        *,
        name: str | None = None,
        parents: list[str] | None = None,
        mime_type: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        if not file_path.is_file():
            raise FileNotFoundError(f"File to upload not found: {file_path}")
        body: dict[str, Any] = {"name": name or file_path.name, "parents": parents or []}
        if description:
            body["description"] = description
        mime_type = mime_type or mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        media = MediaFileUpload(str(file_path), mimetype=mime_type, resumable=True)
        return self._execute(
            f"upload:{file_path.name}",
            lambda files: files.create(body=body, media_body=media, fields=FILE_FIELDS, supportsAllDrives=True),
        )

    def upload_bytes(
        self,
        data: bytes,
        *,
        name: str,
        mime_type: str,
        parents: list[str] | None = None,
    ) -> dict[str, Any]:
        body = {"name": name, "parents": parents or []}
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        return self._execute(
            f"upload:{name}",
            lambda files: files.create(body=body, media_body=media, fields=FILE_FIELDS, supportsAllDrives=True),
        )

    def update_file_content(self, file_id: str, content: str | bytes, mime_type: str) -> dict[str, Any]:
        payload = content.encode("utf-8") if isinstance(content, str) else content
        media = MediaIoBaseUpload(io.BytesIO(payload), mimetype=mime_type, resumable=False)
        return self._execute(
            f"update_content:{file_id}",
            lambda files: files.update(fileId=file_id, media_body=media, fields=FILE_FIELDS, supportsAllDrives=True),
        )

    def update_metadata(
        self,
        file_id: str,
        body: dict[str, Any] | None = None,
        *,
        add_parents: str | None = None,
        remove_parents: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"fileId": file_id, "body": body or {}, "fields": FILE_FIELDS, "supportsAllDrives": True}
        if add_parents:
            params["addParents"] = add_parents
        if remove_parents:
            params["removeParents"] = remove_parents
        return self._execute(f"update_metadata:{file_id}", lambda files: files.update(**params))

    def delete_file(self, file_id: str) -> None:
        self._execute(f"delete:{file_id}", lambda files: files.delete(fileId=file_id, supportsAllDrives=True))

    def create_folder(self, name: str, parent_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            body["parents"] = [parent_id]
        return self._execute(
            f"create_folder:{name}",
            lambda files: files.create(body=body, fields=FILE_FIELDS, supportsAllDrives=True),
        )

    def copy_file(self, file_id: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._execute(
            f"copy:{file_id}",
            lambda files: files.copy(fileId=file_id, body=body or {}, fields=FILE_FIELDS, supportsAllDrives=True),
        )

    # ---- JSON documents ----

    def create_json_file(self, data: Any, name: str, parent_id: str | None = None) -> dict[str, Any]:
        if not name.endswith(".json"):
            name = f"{name}.json"
        payload = json.dumps(data, indent=2).encode("utf-8")
        return self.upload_bytes(
            payload, name=name, mime_type=MIME_TYPES["JSON"], parents=[parent_id] if parent_id else None
        )

    def update_json_content(self, file_id: str, data: Any) -> dict[str, Any]:
        return self.update_file_content(file_id, json.dumps(data, indent=2), MIME_TYPES["JSON"])

    # ---- account / sharing ----

    def share_file(self, file_id: str, email_address: str, role: str = "reader") -> dict[str, Any]:
        body = {"type": "user", "role": role, "emailAddress": email_address}
        return self._run(
            f"share:{file_id}",
            lambda: self.service.permissions()
            .create(fileId=file_id, body=body, fields="id, role, emailAddress", supportsAllDrives=True)
            .execute(),
        )

    def storage_quota(self) -> dict[str, int]:
        response = self._run("storage_quota", lambda: self.service.about().get(fields="storageQuota").execute())
        quota = response.get("storageQuota") or {}
        return {key: int(value) for key, value in quota.items() if value is not None}

    # ---- conversion ----

    def convert(self, file_id: str, target_mime: str) -> dict[str, Any]:
        """Export a Google-native file, or import a regular file into a Google-native type."""
        meta = self.get_metadata(file_id)
        source_mime = meta.get("mimeType")
        parents = meta.get("parents") or None

        if is_google_native(source_mime):
            data = b"".join(self.iter_file_chunks(file_id, export_mime=target_mime))
            name = f"{meta['name']}{EXTENSIONS.get(target_mime, '')}"
            return self.upload_bytes(data, name=name, mime_type=target_mime, parents=parents)

        if is_google_native(target_mime):
            body: dict[str, Any] = {"name": Path(meta["name"]).stem, "mimeType": target_mime}
            if parents:
                body["parents"] = parents
            return self.copy_file(file_id, body)

        raise ConfigurationError(f"Cannot convert {source_mime} to {target_mime}: neither side is a Google format")
