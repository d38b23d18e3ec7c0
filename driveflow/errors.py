from __future__ import annotations

from typing import Any


class DriveFlowError(Exception):
    """Base class for every error raised by driveflow."""


class ConfigurationError(DriveFlowError):
    """Invalid caller input: interval, folder id, credentials file."""


class FolderCycleError(ConfigurationError):
    """A folder lists one of its own ancestors as a child."""

    def __init__(self, folder_id: str, ancestors: tuple[str, ...]):
        chain = " -> ".join((*ancestors, folder_id))
        super().__init__(f"Folder cycle detected: {chain}")
        self.folder_id = folder_id
        self.ancestors = ancestors


class TransportError(DriveFlowError):
    """A Drive API call failed (network, auth, quota)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class DriveNotFoundError(TransportError):
    pass


class DriveAccessDeniedError(TransportError):
    pass


class DriveRateLimitError(TransportError):
    pass


class MalformedRecordError(DriveFlowError):
    """A listed item is missing a field the snapshot needs."""

    def __init__(self, message: str, item: Any = None):
        super().__init__(message)
        self.item = item


class JsonDocumentError(DriveFlowError):
    pass
