"""Unified configuration for the sales sync engine.

Settings come from environment variables, grouped per concern:

    SALES_DATA_ROOT          Root directory for records and checkpoint metadata (default: data)
    SALES_MIN_SHIPPING_FEE   Display-time shipping fee for zero-shipping orders

    MAIL_ADDRESS             Mailbox login
    MAIL_PASSWORD            Mailbox password / app password
    MAIL_HOST                IMAP host (auto-detected from MAIL_ADDRESS if unset)
    MAIL_PORT                IMAP port (default: 993)
    MAIL_FOLDER              Folder to search (default: INBOX)
    MAIL_ENABLED             "true" to schedule the mailbox poller
    MAIL_INTERVAL_SECONDS    Poll interval (default: 3600)

    DRIVE_CLIENT_ID          OAuth client id
    DRIVE_CLIENT_SECRET      OAuth client secret
    DRIVE_ACCESS_TOKEN       Last known access token
    DRIVE_REFRESH_TOKEN      Refresh token
    DRIVE_TOKEN_EXPIRES_AT   ISO timestamp when the access token expires
    DRIVE_FOLDER_ID          Folder to poll
    DRIVE_SOURCE_KIND        Report kind for files whose name does not say (default: online)
    DRIVE_ENABLED            "true" to schedule the drive poller
    DRIVE_INTERVAL_SECONDS   Poll interval (default: 1800)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from sales_sync.exceptions import ConfigError

# Report kind -> subject filter. "online" is the cumulative web-store
# snapshot; "pos" is the point-of-sale export.
DEFAULT_MAIL_SUBJECTS = {
    "online": "Online Orders by customer",
    "pos": "POS Sales by staff",
}

IMAP_HOSTS = {
    "gmail.com": "imap.gmail.com",
    "outlook.com": "outlook.office365.com",
    "hotmail.com": "outlook.office365.com",
    "live.com": "outlook.office365.com",
}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _env_datetime(name: str) -> datetime | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigError(f"{name} must be an ISO timestamp, got {raw!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def imap_host_for(address: str) -> str:
    """Pick the IMAP host for a mailbox address.

    Examples:
        >>> imap_host_for("shop@hotmail.com")
        'outlook.office365.com'
        >>> imap_host_for("shop@example.org")
        'imap.gmail.com'
    """
    domain = address.rsplit("@", 1)[-1].lower()
    if domain in IMAP_HOSTS:
        return IMAP_HOSTS[domain]
    # Regional variants such as outlook.co.uk or hotmail.fr
    provider = domain.split(".", 1)[0]
    if provider in ("outlook", "hotmail", "live"):
        return "outlook.office365.com"
    return "imap.gmail.com"


@dataclass
class MailboxConfig:
    """Mailbox poller settings.

    Attributes:
        address: Login address.
        password: Login password (app password for most providers).
        host: IMAP host.
        port: IMAP SSL port.
        folder: Folder searched for report emails.
        subjects: Report kind -> subject filter.
        enabled: Whether the scheduled poller should start.
        interval_seconds: Seconds between scheduled runs.
    """

    address: str = ""
    password: str = ""
    host: str = "imap.gmail.com"
    port: int = 993
    folder: str = "INBOX"
    subjects: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MAIL_SUBJECTS))
    enabled: bool = False
    interval_seconds: float = 3600.0

    @property
    def has_credentials(self) -> bool:
        return bool(self.address and self.password)

    @classmethod
    def from_env(cls) -> MailboxConfig:
        address = os.environ.get("MAIL_ADDRESS", "")
        return cls(
            address=address,
            password=os.environ.get("MAIL_PASSWORD", ""),
            host=os.environ.get("MAIL_HOST") or imap_host_for(address),
            port=int(_env_float("MAIL_PORT", 993)),
            folder=os.environ.get("MAIL_FOLDER", "INBOX"),
            enabled=_env_bool("MAIL_ENABLED"),
            interval_seconds=_env_float("MAIL_INTERVAL_SECONDS", 3600.0),
        )


@dataclass
class DriveConfig:
    """Drive folder poller settings."""

    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    expires_at: datetime | None = None
    folder_id: str = ""
    source_kind: str = "online"
    enabled: bool = False
    interval_seconds: float = 1800.0

    @property
    def has_credentials(self) -> bool:
        return bool(self.refresh_token or self.access_token)

    @classmethod
    def from_env(cls) -> DriveConfig:
        return cls(
            client_id=os.environ.get("DRIVE_CLIENT_ID", ""),
            client_secret=os.environ.get("DRIVE_CLIENT_SECRET", ""),
            access_token=os.environ.get("DRIVE_ACCESS_TOKEN", ""),
            refresh_token=os.environ.get("DRIVE_REFRESH_TOKEN", ""),
            expires_at=_env_datetime("DRIVE_TOKEN_EXPIRES_AT"),
            folder_id=os.environ.get("DRIVE_FOLDER_ID", ""),
            source_kind=os.environ.get("DRIVE_SOURCE_KIND", "online"),
            enabled=_env_bool("DRIVE_ENABLED"),
            interval_seconds=_env_float("DRIVE_INTERVAL_SECONDS", 1800.0),
        )


@dataclass
class SyncConfig:
    """All settings used by the engine and its pollers.

    Attributes:
        data_root: Root directory for stored records and checkpoint metadata.
        min_shipping_fee: Fee shown for orders stored with zero shipping.
        mailbox: Mailbox poller settings.
        drive: Drive poller settings.
        initial_delay_seconds: Delay before the first scheduled run.
    """

    data_root: Path = Path("data")
    min_shipping_fee: float = 30.0
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    drive: DriveConfig = field(default_factory=DriveConfig)
    initial_delay_seconds: float = 10.0

    @property
    def checkpoint_dir(self) -> Path:
        """Directory where per-source checkpoints are written."""
        return self.data_root / "checkpoints"

    @property
    def records_path(self) -> Path:
        """CSV file holding every stored sales record."""
        return self.data_root / "records" / "sales.csv"

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Build configuration from environment variables.

        Raises:
            ConfigError: If a numeric or timestamp variable is malformed.
        """
        return cls(
            data_root=Path(os.environ.get("SALES_DATA_ROOT", "data")),
            min_shipping_fee=_env_float("SALES_MIN_SHIPPING_FEE", 30.0),
            mailbox=MailboxConfig.from_env(),
            drive=DriveConfig.from_env(),
        )
