from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from driveflow.errors import ConfigurationError


CONFIG_FILENAME = ".driveflow.json"
STATE_DB_FILENAME = ".driveflow_state.db"
DEFAULT_CREDENTIALS_PATH = "credentials.json"
DEFAULT_TOKENS_PATH = "tokens.json"
DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 20.0
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

DRIVE_HOSTS = {"drive.google.com", "docs.google.com"}
FOLDER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(slots=True)
class DriveFlowConfig:
    credentials_path: str = DEFAULT_CREDENTIALS_PATH
    tokens_path: str = DEFAULT_TOKENS_PATH
    root_folder_id: str = "root"
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def credentials_file(self) -> Path:
        return Path(self.credentials_path).expanduser().resolve()

    @property
    def tokens_file(self) -> Path:
        return Path(self.tokens_path).expanduser().resolve()

    def validate(self) -> None:
        validate_interval(self.poll_interval_seconds)
        validate_folder_id(self.root_folder_id)
        if self.fetch_timeout_seconds <= 0:
            raise ConfigurationError("fetch_timeout_seconds must be positive")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def state_db_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / STATE_DB_FILENAME


def load_config(base_dir: Path | None = None) -> DriveFlowConfig:
    path = config_path(base_dir)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}. Run `dflow init` first.")

    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)

    known = {f.name for f in fields(DriveFlowConfig)}
    config = DriveFlowConfig(**{key: value for key, value in data.items() if key in known})
    config.root_folder_id = normalize_folder_id(config.root_folder_id)
    config.validate()
    return config


def save_config(config: DriveFlowConfig, base_dir: Path | None = None) -> Path:
    config.validate()
    path = config_path(base_dir)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(asdict(config), fh, indent=2)
        fh.write("\n")
    return path


def default_config() -> DriveFlowConfig:
    return DriveFlowConfig(
        credentials_path=os.getenv("DRIVEFLOW_CREDENTIALS", DEFAULT_CREDENTIALS_PATH),
        tokens_path=os.getenv("DRIVEFLOW_TOKENS", DEFAULT_TOKENS_PATH),
    )


def normalize_folder_id(value: str) -> str:
    """Reduce a folder id or a Drive web URL to the bare id."""
    value = (value or "").strip()
    if "://" not in value:
        return value.strip("/")

    parsed = urlparse(value)
    if parsed.hostname not in DRIVE_HOSTS:
        return value

    query_id = parse_qs(parsed.query).get("id")
    if query_id:
        return query_id[0]

    # /drive/folders/<id>, /drive/u/0/folders/<id>, /file/d/<id>/view
    parts = [part for part in parsed.path.split("/") if part]
    for marker in ("folders", "d"):
        if marker in parts:
            index = parts.index(marker)
            if index + 1 < len(parts):
                return parts[index + 1]
    return value


def validate_folder_id(folder_id: str) -> str:
    if not isinstance(folder_id, str) or not FOLDER_ID_PATTERN.match(folder_id):
        raise ConfigurationError(f"Invalid folder id: {folder_id!r}")
    return folder_id


def validate_interval(interval_seconds: float) -> float:
    if isinstance(interval_seconds, bool) or not isinstance(interval_seconds, (int, float)):
        raise ConfigurationError(f"Invalid poll interval: {interval_seconds!r}")
    if interval_seconds <= 0:
        raise ConfigurationError(f"Poll interval must be positive, got {interval_seconds}")
    return float(interval_seconds)
