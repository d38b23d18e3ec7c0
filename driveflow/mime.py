from __future__ import annotations


FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_APPS_PREFIX = "application/vnd.google-apps."

MIME_TYPES: dict[str, str] = {
    # Google Workspace
    "FOLDER": FOLDER_MIME_TYPE,
    "DOCUMENT": "application/vnd.google-apps.document",
    "SPREADSHEET": "application/vnd.google-apps.spreadsheet",
    "PRESENTATION": "application/vnd.google-apps.presentation",
    "FORM": "application/vnd.google-apps.form",
    "DRAWING": "application/vnd.google-apps.drawing",
    "APPSCRIPT": "application/vnd.google-apps.script",
    # Documents
    "PDF": "application/pdf",
    "WORD": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "EXCEL": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "POWERPOINT": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "TEXT": "text/plain",
    "CSV": "text/csv",
    "JSON": "application/json",
    # Images
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "SVG": "image/svg+xml",
    # Video
    "MP4": "video/mp4",
    "AVI": "video/x-msvideo",
    "MKV": "video/x-matroska",
    "WEBM": "video/webm",
    # Audio
    "MP3": "audio/mpeg",
    "WAV": "audio/wav",
    # Archives
    "ZIP": "application/zip",
    "RAR": "application/x-rar-compressed",
}

# Format used when a Google-native file has to leave Drive as bytes.
EXPORT_FORMATS: dict[str, tuple[str, str]] = {
    MIME_TYPES["DOCUMENT"]: (MIME_TYPES["WORD"], ".docx"),
    MIME_TYPES["SPREADSHEET"]: (MIME_TYPES["EXCEL"], ".xlsx"),
    MIME_TYPES["PRESENTATION"]: (MIME_TYPES["POWERPOINT"], ".pptx"),
    MIME_TYPES["DRAWING"]: (MIME_TYPES["PNG"], ".png"),
    MIME_TYPES["APPSCRIPT"]: (MIME_TYPES["JSON"], ".json"),
}

EXTENSIONS: dict[str, str] = {
    MIME_TYPES["PDF"]: ".pdf",
    MIME_TYPES["WORD"]: ".docx",
    MIME_TYPES["EXCEL"]: ".xlsx",
    MIME_TYPES["POWERPOINT"]: ".pptx",
    MIME_TYPES["TEXT"]: ".txt",
    MIME_TYPES["CSV"]: ".csv",
    MIME_TYPES["JSON"]: ".json",
    MIME_TYPES["PNG"]: ".png",
    MIME_TYPES["JPEG"]: ".jpg",
}


def _label_for(key: str) -> str:
    # "POWERPOINT" -> "Powerpoint", "GOOGLE_DOC" -> "Google Doc"
    return " ".join(part.capitalize() for part in key.split("_"))


MIME_LABELS: dict[str, str] = {value: _label_for(key) for key, value in MIME_TYPES.items()}


def mime_label(mime_type: str | None) -> str:
    if not mime_type:
        return "Unknown"
    return MIME_LABELS.get(mime_type, mime_type)


def is_google_native(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.startswith(GOOGLE_APPS_PREFIX) and mime_type != FOLDER_MIME_TYPE
