from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from driveflow.errors import ConfigurationError


SCOPES = ["https://www.googleapis.com/auth/drive"]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
CERTS_URL = "https://www.googleapis.com/oauth2/v1/certs"
DEFAULT_OAUTH_PORT = 3000
DEFAULT_REDIRECT_URIS = (
    "http://localhost:3000/oauth2callback",
    "http://localhost:3000/oauth2/callback",
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientSecrets:
    client_id: str
    client_secret: str
    redirect_uri: str | None = None
    token_uri: str = TOKEN_URI
    raw: dict[str, Any] = field(default_factory=dict)

    def as_flow_config(self) -> dict[str, Any]:
        """Client config in the `installed` shape InstalledAppFlow expects."""
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri] if self.redirect_uri else list(DEFAULT_REDIRECT_URIS),
            }
        }


def load_client_secrets(path: Path) -> ClientSecrets:
    """Read a Google OAuth client file in `web`, `installed` or flat form."""
    if not path.exists():
        raise FileNotFoundError(f"Credentials file not found: {path}. Run `dflow auth` first.")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Credentials file is not valid JSON: {path}") from exc

    section = data.get("web") or data.get("installed") or data
    client_id = section.get("client_id")
    client_secret = section.get("client_secret")
    if not client_id or not client_secret:
        raise ConfigurationError(f"Credentials file lacks client_id/client_secret: {path}")

    redirect_uris = section.get("redirect_uris")
    if isinstance(redirect_uris, list) and redirect_uris:
        redirect_uri = str(redirect_uris[0])
    else:
        redirect_uri = section.get("redirect_uri")

    return ClientSecrets(
        client_id=str(client_id),
        client_secret=str(client_secret),
        redirect_uri=redirect_uri,
        token_uri=str(section.get("token_uri") or TOKEN_URI),
        raw=data,
    )


def write_client_secrets(
    path: Path,
    *,
    client_id: str | None = None,
    project_id: str | None = None,
    client_secret: str | None = None,
    redirect_uris: list[str] | tuple[str, ...] | None = None,
    javascript_origins: list[str] | tuple[str, ...] | None = None,
) -> bool:
    """Create a `web` credentials file if none exists. Returns True when written."""
    if path.exists():
        return False

    client_id = client_id or os.getenv("GOOGLE_CLIENT_ID", "")
    client_secret = client_secret or os.getenv("GOOGLE_CLIENT_SECRET", "")
    project_id = project_id or os.getenv("GOOGLE_PROJECT_ID", "")
    if not client_id or not client_secret:
        raise ConfigurationError(
            "client id and secret are required (pass them or set GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET)"
        )
    if not redirect_uris:
        env_redirect = os.getenv("GOOGLE_REDIRECT_URI")
        redirect_uris = [env_redirect, DEFAULT_REDIRECT_URIS[1]] if env_redirect else list(DEFAULT_REDIRECT_URIS)

    payload = {
        "web": {
            "client_id": client_id,
            "project_id": project_id,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "auth_provider_x509_cert_url": CERTS_URL,
            "client_secret": client_secret,
            "redirect_uris": list(redirect_uris),
            "javascript_origins": list(javascript_origins or ["http://localhost:3000"]),
        }
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    logger.info("Created credentials file %s", path)
    return True


def _parse_expiry(data: dict[str, Any]) -> datetime | None:
    expiry_ms = data.get("expiry_date")
    if expiry_ms:
        # google-auth compares against naive UTC datetimes
        return datetime.fromtimestamp(int(expiry_ms) / 1000, tz=timezone.utc).replace(tzinfo=None)
    expiry = data.get("expiry")
    if expiry:
        parsed = datetime.fromisoformat(str(expiry).replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    return None


def credentials_from_token_data(data: dict[str, Any], secrets: ClientSecrets) -> Credentials:
    token = data.get("access_token") or data.get("token")
    refresh_token = data.get("refresh_token")
    if not token and not refresh_token:
        raise ConfigurationError("Token data contains neither an access token nor a refresh token")

    scope = data.get("scope") or data.get("scopes") or SCOPES
    scopes = scope.split() if isinstance(scope, str) else list(scope)
    return Credentials(
        token=token,
        refresh_token=refresh_token,
        token_uri=secrets.token_uri,
        client_id=secrets.client_id,
        client_secret=secrets.client_secret,
        scopes=scopes,
        expiry=_parse_expiry(data),
    )


def token_data_from_credentials(credentials: Credentials) -> dict[str, Any]:
    data: dict[str, Any] = {
        "access_token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "scope": " ".join(credentials.scopes or SCOPES),
        "token_type": "Bearer",
    }
    if credentials.expiry is not None:
        expiry = credentials.expiry.replace(tzinfo=timezone.utc)
        data["expiry_date"] = int(expiry.timestamp() * 1000)
    return data


class TokenStore:
    """Persists OAuth tokens and writes them back whenever the access token changes."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._last_token: str | None = None

    def load(self, secrets: ClientSecrets) -> Credentials:
        if not self.path.exists():
            raise FileNotFoundError(f"Token file not found: {self.path}. Run `dflow auth` first.")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Token file is not valid JSON: {self.path}") from exc
        credentials = credentials_from_token_data(data, secrets)
        self._last_token = credentials.token
        return credentials

    def save(self, credentials: Credentials) -> None:
        with self._lock:
            payload = token_data_from_credentials(credentials)
            if not payload.get("refresh_token") and self.path.exists():
                # Refresh responses usually omit the refresh token; keep the stored one.
                previous = json.loads(self.path.read_text(encoding="utf-8"))
                payload["refresh_token"] = previous.get("refresh_token")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
            self._last_token = credentials.token

    def save_if_refreshed(self, credentials: Credentials) -> bool:
        if credentials.token and credentials.token != self._last_token:
            self.save(credentials)
            logger.info("Tokens refreshed and saved to %s", self.path)
            return True
        return False


def run_oauth_flow(
    secrets: ClientSecrets,
    token_store: TokenStore,
    *,
    port: int = DEFAULT_OAUTH_PORT,
    open_browser: bool = True,
) -> Credentials:
    """Reuse stored tokens when present, otherwise run the local-server consent flow."""
    if token_store.path.exists():
        logger.info("Using existing tokens from %s", token_store.path)
        return token_store.load(secrets)

    flow = InstalledAppFlow.from_client_config(secrets.as_flow_config(), scopes=SCOPES)
    credentials = flow.run_local_server(
        port=port,
        open_browser=open_browser,
        access_type="offline",
        prompt="consent",
        success_message="Authentication successful. You can close this window and return to your terminal.",
    )
    token_store.save(credentials)
    logger.info("Tokens saved to %s", token_store.path)
    return credentials
