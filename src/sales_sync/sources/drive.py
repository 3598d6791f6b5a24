"""Drive folder poller: ingest new or changed report files.

Run flow:
1. Refresh the OAuth access token if it has expired (persisted through
   ``on_refresh``)
2. List CSV/Excel files in the folder, newest first, following pages
3. Skip any file whose modifiedTime is not newer than its checkpoint
4. Download, ingest in upsert mode, record the checkpoint

Credential and connection failures abort the whole run before any
checkpoint is written. A file that fails to parse records a failed outcome
and keeps its previous modification time, so it is retried next run.

Environment (via DriveConfig.from_env):
  DRIVE_CLIENT_ID, DRIVE_CLIENT_SECRET, DRIVE_ACCESS_TOKEN,
  DRIVE_REFRESH_TOKEN, DRIVE_TOKEN_EXPIRES_AT, DRIVE_FOLDER_ID
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from sales_sync.checkpoints import OUTCOME_FAILED, OUTCOME_SUCCESS, parse_timestamp, utc_now
from sales_sync.config import DriveConfig
from sales_sync.exceptions import (
    ConfigError,
    CredentialError,
    IngestionError,
    SourceConnectionError,
)
from sales_sync.ingest.parser import is_supported_file
from sales_sync.ingest.pipeline import IngestionContext, ingest
from sales_sync.models import DedupMode, SourceKind
from sales_sync.sources.http import make_session
from sales_sync.sources.result import (
    STATUS_FAILED,
    STATUS_IMPORTED,
    STATUS_SKIPPED,
    FileOutcome,
    PollResult,
)
from sales_sync.store import SalesStore

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
API_BASE = "https://www.googleapis.com/drive/v3"
PAGE_SIZE = 100

SUPPORTED_MIME_TYPES = (
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
)

_POS_NAME_RE = re.compile(r"(^|[^a-z])pos([^a-z]|$)|point[ _-]?of[ _-]?sale", re.IGNORECASE)


def kind_for_file(name: str, default: SourceKind | str = SourceKind.ONLINE) -> SourceKind:
    """Report kind for a drive file, from its name.

    Examples:
        >>> kind_for_file("POS_sales_by_staff_2026-02.xlsx").value
        'pos'
        >>> kind_for_file("deposits.csv").value
        'online'
    """
    if _POS_NAME_RE.search(name or ""):
        return SourceKind.POS
    return SourceKind.parse(default)


@dataclass
class DriveCredentials:
    """OAuth credentials for the drive API."""

    client_id: str
    client_secret: str
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return True
        if self.expires_at is None:
            return False
        return parse_timestamp(self.expires_at) <= (now or utc_now())

    @classmethod
    def from_config(cls, config: DriveConfig) -> DriveCredentials:
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            expires_at=config.expires_at,
        )


@dataclass
class DriveFile:
    id: str
    name: str
    mime_type: str
    modified_time: Optional[datetime]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> DriveFile:
        modified = data.get("modifiedTime")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            modified_time=parse_timestamp(modified) if modified else None,
        )


class DriveClient:
    """Minimal Drive v3 REST client.

    Args:
        credentials: OAuth credentials; refreshed in place when expired.
        session: requests Session; ``make_session()`` by default.
        on_refresh: Called with the credentials after every refresh so the
            caller can persist the new access token.
    """

    def __init__(
        self,
        credentials: DriveCredentials,
        session: Optional[requests.Session] = None,
        on_refresh: Optional[Callable[[DriveCredentials], None]] = None,
    ) -> None:
        self.credentials = credentials
        self.session = session or make_session()
        self.on_refresh = on_refresh

    def refresh(self) -> None:
        """Exchange the refresh token for a new access token.

        Raises:
            CredentialError: If no refresh token is configured or the token
                endpoint rejects it.
            SourceConnectionError: If the token endpoint cannot be reached.
        """
        creds = self.credentials
        if not (creds.refresh_token and creds.client_id and creds.client_secret):
            raise CredentialError("Drive refresh token or OAuth client is not configured")
        try:
            resp = self.session.post(
                TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": creds.refresh_token,
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                },
            )
        except requests.RequestException as e:
            raise SourceConnectionError(f"Token endpoint unreachable: {e}") from e
        if resp.status_code in (400, 401, 403):
            raise CredentialError(f"Token refresh rejected ({resp.status_code}): {resp.text[:200]}")
        if resp.status_code >= 400:
            raise SourceConnectionError(f"Token refresh failed with HTTP {resp.status_code}")

        payload = resp.json()
        token = payload.get("access_token")
        if not token:
            raise CredentialError("Token endpoint returned no access_token")
        creds.access_token = token
        creds.expires_at = utc_now() + timedelta(seconds=int(payload.get("expires_in", 3600)))
        if payload.get("refresh_token"):
            creds.refresh_token = payload["refresh_token"]
        logger.info("Refreshed drive access token (expires %s)", creds.expires_at.isoformat())
        if self.on_refresh is not None:
            self.on_refresh(creds)

    def ensure_token(self) -> None:
        if self.credentials.needs_refresh():
            logger.info("Drive access token expired, refreshing")
            self.refresh()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        self.ensure_token()
        for attempt in (1, 2):
            headers = {"Authorization": f"Bearer {self.credentials.access_token}"}
            try:
                resp = self.session.get(url, params=params, headers=headers)
            except requests.RequestException as e:
                raise SourceConnectionError(f"Drive request failed: {e}") from e
            if resp.status_code == 401 and attempt == 1:
                # Token revoked or expired early
                self.refresh()
                continue
            break
        if resp.status_code in (401, 403):
            raise CredentialError(f"Drive API denied access ({resp.status_code})")
        if resp.status_code >= 400:
            raise SourceConnectionError(f"Drive API returned HTTP {resp.status_code} for {url}")
        return resp

    def list_files(self, folder_id: str) -> List[DriveFile]:
        """CSV and Excel files in a folder, most recently modified first."""
        mime_filter = " or ".join(f"mimeType = '{m}'" for m in SUPPORTED_MIME_TYPES)
        params: Dict[str, Any] = {
            "q": f"'{folder_id}' in parents and trashed = false and ({mime_filter})",
            "fields": "nextPageToken, files(id, name, mimeType, modifiedTime)",
            "orderBy": "modifiedTime desc",
            "pageSize": PAGE_SIZE,
        }
        files: List[DriveFile] = []
        while True:
            payload = self._get(f"{API_BASE}/files", params).json()
            files.extend(DriveFile.from_api(f) for f in payload.get("files", []))
            token = payload.get("nextPageToken")
            if not token:
                break
            params = dict(params, pageToken=token)
        logger.debug("Listed %d files in folder %s", len(files), folder_id)
        return files

    def download(self, file: DriveFile) -> bytes:
        return self._get(f"{API_BASE}/files/{file.id}", {"alt": "media"}).content

    def test_connection(self) -> dict:
        """Check that the credentials work.

        Returns:
            Dict with "ok" and either "user" or "error".
        """
        try:
            about = self._get(f"{API_BASE}/about", {"fields": "user"}).json()
        except (CredentialError, SourceConnectionError) as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "user": about.get("user", {}).get("emailAddress")}


class DrivePoller:
    """Ingest new or changed report files from one drive folder.

    Args:
        store: Target store (also holds the checkpoints).
        client: Drive client.
        folder_id: Folder to poll.
        default_kind: Report kind for files whose name does not name one.
    """

    def __init__(
        self,
        store: SalesStore,
        client: DriveClient,
        folder_id: str,
        default_kind: SourceKind | str = SourceKind.ONLINE,
    ) -> None:
        self.store = store
        self.client = client
        self.folder_id = folder_id
        self.default_kind = SourceKind.parse(default_kind)

    @property
    def source_id(self) -> str:
        return f"drive:{self.folder_id}"

    def poll(self) -> PollResult:
        """Run one folder poll.

        Raises:
            ConfigError: If no folder is configured.
            CredentialError: If the token cannot be refreshed or is rejected.
            SourceConnectionError: If the drive API cannot be reached.
        """
        if not self.folder_id:
            raise ConfigError("No drive folder configured for sync")
        result = PollResult(source_id=self.source_id)
        files = self.client.list_files(self.folder_id)
        logger.info("Found %d files in drive folder %s", len(files), self.folder_id)
        for file in files:
            result.files.append(self._process(file))
        logger.info(result.summary())
        return result

    def _process(self, file: DriveFile) -> FileOutcome:
        if not is_supported_file(file.name):
            logger.info("Skipping %s - unsupported format", file.name)
            return FileOutcome(file.id, file.name, STATUS_SKIPPED, file.modified_time,
                               detail="unsupported format")

        last = self.store.last_checkpoint(self.source_id, file.id)
        if last is not None and file.modified_time is not None and file.modified_time <= last:
            logger.info("Skipping %s - already synced", file.name)
            return FileOutcome(file.id, file.name, STATUS_SKIPPED, file.modified_time,
                               detail="already synced")

        mod_time = file.modified_time or utc_now()
        content = self.client.download(file)
        kind = kind_for_file(file.name, self.default_kind)
        context = IngestionContext(source_label=file.name, file_name=file.name)
        try:
            report = ingest(self.store, content, kind, DedupMode.UPSERT, context)
        except IngestionError as e:
            logger.error("Failed to ingest %s: %s", file.name, e)
            self.store.record_checkpoint(self.source_id, file.id, mod_time, OUTCOME_FAILED)
            return FileOutcome(file.id, file.name, STATUS_FAILED, file.modified_time,
                               detail=str(e))

        self.store.record_checkpoint(self.source_id, file.id, mod_time, OUTCOME_SUCCESS)
        return FileOutcome(file.id, file.name, STATUS_IMPORTED, file.modified_time, report)


def build_drive_poller(
    store: SalesStore,
    config: DriveConfig,
    on_refresh: Optional[Callable[[DriveCredentials], None]] = None,
) -> DrivePoller:
    """Wire a DrivePoller from configuration."""
    client = DriveClient(DriveCredentials.from_config(config), on_refresh=on_refresh)
    return DrivePoller(store, client, config.folder_id, config.source_kind)
