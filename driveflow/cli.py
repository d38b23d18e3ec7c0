from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from driveflow.archive import archive_to_zip
from driveflow.auth import DEFAULT_OAUTH_PORT, TokenStore, load_client_secrets, run_oauth_flow, write_client_secrets
from driveflow.config import (
    DriveFlowConfig,
    default_config,
    load_config,
    normalize_folder_id,
    save_config,
    state_db_path,
)
from driveflow.crypto import decrypt_text, encrypt_text
from driveflow.drive_client import DriveClient
from driveflow.errors import DriveFlowError
from driveflow.json_docs import add_json_key_value, delete_json_key
from driveflow.mime import mime_label
from driveflow.models import ChangeEvent, FileRecord
from driveflow.operations import CONVERSIONS, convert_file, search_by_content, search_by_name, search_by_type
from driveflow.snapshot import fetch_snapshot, fetch_snapshot_deep
from driveflow.state_db import get_meta, set_meta
from driveflow.status_service import compute_and_refresh_status, compute_status
from driveflow.transfer_ui import TransferProgress
from driveflow.watcher import WatchSession


app = typer.Typer(help="driveflow: Google Drive from the command line")
console = Console()
logger = logging.getLogger("driveflow")

EVENT_STYLES = {"added": "green", "modified": "cyan", "deleted": "yellow"}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    if not verbose:
        # googleapiclient logs every discovery/cache lookup at INFO
        logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def _load_client(config: DriveFlowConfig) -> DriveClient:
    return DriveClient.from_files(config.credentials_file, config.tokens_file, page_size=config.page_size)


def _format_size(size: Any) -> str:
    return "-" if size is None else str(size)


def _render_items(title: str, items: list[dict[str, Any]]) -> None:
    table = Table(title=title)
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for item in items:
        table.add_row(
            str(item.get("id", "")),
            str(item.get("name", "")),
            mime_label(item.get("mimeType")),
            _format_size(item.get("size")),
            str(item.get("modifiedTime", "")),
        )
    console.print(table)


def _render_changes(title: str, records: list[FileRecord]) -> None:
    if not records:
        return

    table = Table(title=title)
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Modified")

    for record in records:
        table.add_row(record.id, record.name, record.kind.value, record.last_modified)

    console.print(table)


def _render_event(event: ChangeEvent) -> None:
    style = EVENT_STYLES[event.type]
    console.print(
        Text.assemble(
            (f"{event.type:<9}", style),
            f"{event.file.name} ",
            (f"({event.file.id}, {event.file.last_modified})", "dim"),
        )
    )


def _run_command(action) -> int:
    try:
        return action() or 0
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted.[/yellow]")
        return 130
    except (DriveFlowError, FileNotFoundError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1


@app.command()
def init(
    credentials: str = typer.Option(None, "--credentials", help="Path to the OAuth client credentials file."),
    tokens: str = typer.Option(None, "--tokens", help="Path to the OAuth token file."),
    root: str = typer.Option("root", "--root", help="Default folder id or Drive URL for ls/status/watch."),
    interval: float = typer.Option(30.0, "--interval", help="Default poll interval in seconds."),
) -> None:
    """Write a driveflow config in the current directory."""

    def _init() -> int:
        config = default_config()
        if credentials:
            config.credentials_path = credentials
        if tokens:
            config.tokens_path = tokens
        config.root_folder_id = normalize_folder_id(root)
        config.poll_interval_seconds = interval
        config.fetch_timeout_seconds = min(config.fetch_timeout_seconds, interval * 0.8)
        path = save_config(config)
        console.print(f"[green]Initialized driveflow[/green] config: {path}")
        console.print(f"Credentials: {config.credentials_file}")
        console.print(f"Tokens: {config.tokens_file}")
        return 0

    raise typer.Exit(code=_run_command(_init))


@app.command()
def auth(
    client_id: str = typer.Option(None, "--client-id", help="OAuth client id (defaults to GOOGLE_CLIENT_ID)."),
    client_secret: str = typer.Option(None, "--client-secret", help="OAuth client secret (defaults to GOOGLE_CLIENT_SECRET)."),
    project_id: str = typer.Option(None, "--project-id", help="Google Cloud project id."),
    port: int = typer.Option(DEFAULT_OAUTH_PORT, "--port", help="Local port for the OAuth redirect."),
    no_browser: bool = typer.Option(False, "--no-browser", help="Print the consent URL instead of opening a browser."),
) -> None:
    """Create credentials.json if missing and obtain OAuth tokens."""

    def _auth() -> int:
        config = load_config()
        if write_client_secrets(
            config.credentials_file,
            client_id=client_id,
            client_secret=client_secret,
            project_id=project_id,
        ):
            console.print(f"[green]Created[/green] {config.credentials_file}")
        secrets = load_client_secrets(config.credentials_file)
        run_oauth_flow(secrets, TokenStore(config.tokens_file), port=port, open_browser=not no_browser)
        console.print(f"[green]Authenticated.[/green] Tokens in {config.tokens_file}")
        return 0

    raise typer.Exit(code=_run_command(_auth))


@app.command("ls")
def list_folder(
    folder: str = typer.Argument(None, help="Folder id or Drive URL. Defaults to the configured root."),
    deep: bool = typer.Option(False, "--deep", help="List the whole subtree."),
) -> None:
    """List the contents of a folder."""

    def _ls() -> int:
        config = load_config()
        client = _load_client(config)
        folder_id = normalize_folder_id(folder) if folder else config.root_folder_id
        fetch = fetch_snapshot_deep if deep else fetch_snapshot
        snapshot = fetch(client, folder_id)
        records = sorted(snapshot.values(), key=lambda r: (not r.is_folder, r.name.lower()))
        _render_items(
            f"{folder_id} ({len(records)} item(s))",
            [
                {"id": r.id, "name": r.name, "mimeType": r.mime_type, "size": r.size, "modifiedTime": r.last_modified}
                for r in records
            ],
        )
        return 0

    raise typer.Exit(code=_run_command(_ls))


@app.command()
def info(
    file_id: str,
    complete: bool = typer.Option(False, "--complete", help="Fetch every metadata field."),
) -> None:
    """Show file metadata as JSON."""

    def _info() -> int:
        client = _load_client(load_config())
        meta = client.get_complete_metadata(file_id) if complete else client.get_metadata(file_id)
        console.print_json(json.dumps(meta))
        return 0

    raise typer.Exit(code=_run_command(_info))


@app.command()
def upload(
    path: Path,
    folder: str = typer.Option(None, "--folder", help="Destination folder id."),
    name: str = typer.Option(None, "--name", help="Name in Drive. Defaults to the local file name."),
) -> None:
    """Upload a local file."""

    def _upload() -> int:
        client = _load_client(load_config())
        with console.status(f"Uploading {path.name}..."):
            meta = client.upload_file(path, name=name, parents=[normalize_folder_id(folder)] if folder else None)
        console.print(f"[green]Uploaded[/green] {meta.get('name')} ({meta.get('id')})")
        return 0

    raise typer.Exit(code=_run_command(_upload))


@app.command()
def download(
    file_id: str,
    dest: Path,
    export: str = typer.Option(None, "--export", help="Export MIME type for Google Docs/Sheets/Slides."),
) -> None:
    """Download a file."""

    def _download() -> int:
        client = _load_client(load_config())
        meta = client.get_metadata(file_id)
        size = meta.get("size")
        with TransferProgress(console) as progress:
            with progress.track("download", str(meta.get("name", file_id)), int(size) if size else None) as counter:
                client.download_file(file_id, dest, export_mime=export, on_progress=counter)
        console.print(f"[green]Saved[/green] {dest}")
        return 0

    raise typer.Exit(code=_run_command(_download))


@app.command("rm")
def remove(file_ids: list[str]) -> None:
    """Delete files or folders by id."""

    def _rm() -> int:
        client = _load_client(load_config())
        for file_id in file_ids:
            client.delete_file(file_id)
            console.print(f"[yellow]Deleted[/yellow] {file_id}")
        return 0

    raise typer.Exit(code=_run_command(_rm))


@app.command()
def mkdir(name: str, parent: str = typer.Option(None, "--parent", help="Parent folder id.")) -> None:
    """Create a folder."""

    def _mkdir() -> int:
        client = _load_client(load_config())
        meta = client.create_folder(name, normalize_folder_id(parent) if parent else None)
        console.print(f"[green]Created folder[/green] {meta.get('name')} ({meta.get('id')})")
        return 0

    raise typer.Exit(code=_run_command(_mkdir))


@app.command()
def quota() -> None:
    """Show storage usage."""

    def _quota() -> int:
        usage = _load_client(load_config()).storage_quota()
        table = Table(title="Storage quota")
        table.add_column("Field")
        table.add_column("Bytes", justify="right")
        for key, value in usage.items():
            table.add_row(key, str(value))
        console.print(table)
        return 0

    raise typer.Exit(code=_run_command(_quota))


@app.command()
def search(
    text: str,
    type_: bool = typer.Option(False, "--type", help="Treat TEXT as a type alias or MIME type."),
    content: bool = typer.Option(False, "--content", help="Search file contents instead of names."),
) -> None:
    """Search by name (default), type or content."""

    def _search() -> int:
        client = _load_client(load_config())
        if type_:
            page = search_by_type(client, text)
        elif content:
            page = search_by_content(client, text)
        else:
            page = search_by_name(client, text, match="contains")
        _render_items(f"Results for {text!r}", page.files)
        if page.next_page_token:
            console.print("[dim]More results available.[/dim]")
        return 0

    raise typer.Exit(code=_run_command(_search))


@app.command()
def convert(
    file_id: str,
    conversion: str = typer.Argument(..., help=f"One of: {', '.join(sorted(CONVERSIONS))}"),
) -> None:
    """Convert a file between Google and Office/PDF formats."""

    def _convert() -> int:
        meta = convert_file(_load_client(load_config()), file_id, conversion)
        console.print(f"[green]Created[/green] {meta.get('name')} ({meta.get('id')})")
        return 0

    raise typer.Exit(code=_run_command(_convert))


async def _status_async(folder: str | None, deep: bool, refresh_snapshot_after: bool) -> int:
    config = load_config()
    client = _load_client(config)
    folder_id = normalize_folder_id(folder) if folder else config.root_folder_id
    db_path = state_db_path()
    scope_key = f"{folder_id}:{'deep' if deep else 'shallow'}"

    recorded_at = await get_meta(db_path, f"snapshot_at:{scope_key}")
    fetch = fetch_snapshot_deep if deep else fetch_snapshot
    with console.status(f"Listing {folder_id} ..."):
        current = await asyncio.to_thread(fetch, client, folder_id)

    if refresh_snapshot_after:
        result = await compute_and_refresh_status(db_path, scope_key, current)
        await set_meta(db_path, f"snapshot_at:{scope_key}", time.strftime("%Y-%m-%d %H:%M:%S"))
    else:
        result = await compute_status(db_path, scope_key, current)

    _render_changes("New", result.new_files)
    _render_changes("Modified", result.modified_files)
    _render_changes("Deleted", result.deleted_files)

    if not result.has_changes:
        console.print("[green]No changes detected.[/green]")

    if refresh_snapshot_after:
        console.print(f"[green]Snapshot refreshed:[/green] {result.snapshot_count} tracked item(s) in {db_path}")
        return 0

    baseline = f"recorded {recorded_at}" if recorded_at else "never recorded"
    console.print(f"Current listing: {result.snapshot_count} item(s). Baseline {baseline} in {db_path}")
    return 0


@app.command()
def status(
    folder: str = typer.Argument(None, help="Folder id or Drive URL. Defaults to the configured root."),
    deep: bool = typer.Option(False, "--deep", help="Compare the whole subtree."),
    refresh_snapshot_flag: bool = typer.Option(
        False,
        "--refresh-snapshot",
        help="Record the current listing as the new baseline.",
    ),
) -> None:
    """Show changes in a folder since the last recorded snapshot."""
    raise typer.Exit(code=_run_command(lambda: asyncio.run(_status_async(folder, deep, refresh_snapshot_flag))))


async def _watch_async(folder: str | None, deep: bool, interval: float | None) -> int:
    config = load_config()
    client = _load_client(config)
    folder_id = normalize_folder_id(folder) if folder else config.root_folder_id
    interval_seconds = interval if interval is not None else config.poll_interval_seconds

    def _on_error(exc: Exception) -> None:
        console.print(f"[red]watch error:[/red] {exc}")

    session = WatchSession(
        client,
        folder_id,
        interval_seconds,
        _render_event,
        deep=deep,
        on_error=_on_error,
        fetch_timeout=min(config.fetch_timeout_seconds, interval_seconds),
    )
    await session.start()
    console.print(
        f"Watching [bold]{folder_id}[/bold] every {interval_seconds:g}s"
        f"{' (deep)' if deep else ''}. Press Ctrl-C to stop."
    )
    try:
        await session.wait()
    finally:
        await session.stop()
    return 0


@app.command()
def watch(
    folder: str = typer.Argument(None, help="Folder id or Drive URL. Defaults to the configured root."),
    deep: bool = typer.Option(False, "--deep", help="Watch the whole subtree."),
    interval: float = typer.Option(None, "--interval", help="Poll interval in seconds."),
) -> None:
    """Print added/modified/deleted items as they happen."""
    raise typer.Exit(code=_run_command(lambda: asyncio.run(_watch_async(folder, deep, interval))))


@app.command("zip")
def zip_folder(
    folder: str = typer.Argument(..., help="Folder id or Drive URL to archive."),
    output: Path = typer.Option(..., "--output", "-o", help="Local zip path."),
    upload_to: str = typer.Option(None, "--upload-to", help="Upload the archive into this folder id."),
    password: str = typer.Option(None, "--password", help="Encrypt entries with AES-256 using this password."),
) -> None:
    """Download a folder tree into a zip archive."""

    def _zip() -> int:
        client = _load_client(load_config())
        with TransferProgress(console) as progress, progress.track("zip", output.name) as counter:
            result = archive_to_zip(
                client,
                output,
                folder_id=normalize_folder_id(folder),
                upload_to_folder_id=normalize_folder_id(upload_to) if upload_to else None,
                password=password,
                on_progress=counter.per_entry(),
            )
            counter.relabel(output.name)
        encrypted = " (AES-256 encrypted)" if password else ""
        console.print(f"[green]Archived[/green] {len(result.archived_paths)} file(s) into {output}{encrypted}")
        for path in result.skipped_paths:
            console.print(f"  [yellow]skipped[/yellow] {path}")
        if result.uploaded:
            console.print(f"Uploaded as {result.uploaded.get('id')}")
        return 0

    raise typer.Exit(code=_run_command(_zip))


def _parse_json_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@app.command("json-set")
def json_set(file_id: str, key_path: str, value: str) -> None:
    """Set a dot-path key in a JSON file stored in Drive. VALUE is parsed as JSON when possible."""

    def _set() -> int:
        add_json_key_value(_load_client(load_config()), file_id, key_path, _parse_json_value(value))
        console.print(f"[green]Updated[/green] {key_path}")
        return 0

    raise typer.Exit(code=_run_command(_set))


@app.command("json-del")
def json_del(file_id: str, key_path: str) -> None:
    """Delete a dot-path key or array index from a JSON file stored in Drive."""

    def _del() -> int:
        delete_json_key(_load_client(load_config()), file_id, key_path)
        console.print(f"[yellow]Deleted[/yellow] {key_path}")
        return 0

    raise typer.Exit(code=_run_command(_del))


@app.command()
def encrypt(
    text: str,
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    salt: str = typer.Option(..., "--salt"),
) -> None:
    """Encrypt text with AES-256-GCM."""
    console.print(encrypt_text(text, password, salt))


@app.command()
def decrypt(
    token: str,
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    salt: str = typer.Option(..., "--salt"),
) -> None:
    """Decrypt text produced by `encrypt`."""
    try:
        console.print(decrypt_text(token, password, salt))
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
