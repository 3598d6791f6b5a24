"""Command-line entry point.

Subcommands:
    upload          Ingest a report file in strict mode (manual upload)
    poll-mail       Run one mailbox poll
    poll-drive      Run one drive folder poll
    serve           Run both pollers on their schedules until interrupted
    staff-ids       List the staff ids referenced by a report's customer tags
    backfill-staff  Attach staff names to stored records that have none

Examples:
    $ sales-sync upload orders.csv --kind online --expected-rows 120
    $ sales-sync upload pos.xlsx --kind pos --staff-map staff_map.json --json
    $ sales-sync staff-ids orders.xlsx --staff-directory staff.json
    $ sales-sync backfill-staff staff_map.json --kind online
    $ MAIL_ENABLED=true DRIVE_ENABLED=true sales-sync serve
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from sales_sync.checkpoints import JsonCheckpointStore
from sales_sync.config import SyncConfig
from sales_sync.exceptions import ConfigError, SalesSyncError
from sales_sync.ingest import staff as staff_resolver
from sales_sync.ingest.columns import resolve
from sales_sync.ingest.parser import parse
from sales_sync.ingest.pipeline import ingest_upload
from sales_sync.models import StaffEntry
from sales_sync.sources.drive import build_drive_poller
from sales_sync.sources.mailbox import MailboxPoller
from sales_sync.sources.scheduler import ScheduledTask
from sales_sync.store import CsvSalesStore, SalesStore

logger = logging.getLogger(__name__)


def _load_json(path: Optional[Path]) -> object:
    if path is None:
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_staff_directory(path: Optional[Path]) -> List[StaffEntry]:
    """Read a staff directory file: ``[{"id": ..., "name": ...}]`` or ``{id: name}``."""
    data = _load_json(path)
    if not data:
        return []
    if isinstance(data, dict):
        return [StaffEntry(id=str(k), name=str(v)) for k, v in data.items()]
    return [StaffEntry(id=str(e["id"]), name=str(e["name"])) for e in data]


def build_store(config: SyncConfig, staff_path: Optional[Path] = None) -> CsvSalesStore:
    """Store whose records and checkpoints both live under the data root."""
    return CsvSalesStore(
        config.records_path,
        staff=load_staff_directory(staff_path),
        checkpoints=JsonCheckpointStore(config.checkpoint_dir),
    )


def _emit(payload: dict, as_json: bool, text: str) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
    else:
        print(text)


def cmd_upload(args: argparse.Namespace, config: SyncConfig) -> int:
    store = build_store(config, args.staff_directory)
    client_map = _load_json(args.staff_map) or {}
    report = ingest_upload(
        store,
        args.file.read_bytes(),
        args.kind,
        client_staff_map=client_map,
        expected_row_count=args.expected_rows,
        file_name=args.file.name,
    )
    _emit(report.to_dict(), args.json, report.summary())
    for warning in report.warnings:
        logger.warning(warning)
    return 0 if report.failed == 0 else 1


def cmd_poll_mail(args: argparse.Namespace, config: SyncConfig) -> int:
    poller = MailboxPoller(build_store(config, args.staff_directory), config.mailbox)
    result = poller.poll()
    _emit(result.to_dict(), args.json, result.summary())
    return 0 if result.success else 1


def cmd_poll_drive(args: argparse.Namespace, config: SyncConfig) -> int:
    poller = build_drive_poller(build_store(config, args.staff_directory), config.drive)
    result = poller.poll()
    _emit(result.to_dict(), args.json, result.summary())
    return 0 if result.success else 1


def cmd_staff_ids(args: argparse.Namespace, config: SyncConfig) -> int:
    table = parse(args.file.read_bytes(), file_name=args.file.name)
    column_map = resolve(table.headers, args.kind)
    directory = {e.id: e.name for e in load_staff_directory(args.staff_directory)}
    found = staff_resolver.extract_staff_ids(table.rows, column_map, directory)
    text = "\n".join(
        f"{sid}\t{found['orders_per_id'][sid]}\t{directory.get(sid, '(unmapped)')}"
        for sid in found["staff_ids"]
    )
    text += f"\n{found['mapped_count']} mapped, {found['unmapped_count']} unmapped"
    _emit(found, args.json, text.strip())
    return 0


def cmd_backfill_staff(args: argparse.Namespace, config: SyncConfig) -> int:
    updates = _load_json(args.staff_map) or {}
    if not isinstance(updates, dict):
        raise ConfigError(f"{args.staff_map} must hold a JSON object of reference -> staff name")
    store = build_store(config, args.staff_directory)
    result = staff_resolver.backfill_staff(store, updates, args.kind)
    _emit(result.to_dict(), args.json, result.summary())
    return 0


def build_tasks(config: SyncConfig, store: SalesStore) -> List[ScheduledTask]:
    """Scheduled tasks for every enabled poller."""
    tasks = []
    if config.mailbox.enabled:
        mail = MailboxPoller(store, config.mailbox)
        tasks.append(
            ScheduledTask(
                "mailbox", mail.poll, config.mailbox.interval_seconds, config.initial_delay_seconds
            )
        )
    if config.drive.enabled:
        drive = build_drive_poller(store, config.drive)
        tasks.append(
            ScheduledTask(
                "drive", drive.poll, config.drive.interval_seconds, config.initial_delay_seconds
            )
        )
    return tasks


def cmd_serve(args: argparse.Namespace, config: SyncConfig) -> int:
    store = build_store(config, args.staff_directory)
    tasks = build_tasks(config, store)
    if not tasks:
        logger.error("No poller enabled; set MAIL_ENABLED and/or DRIVE_ENABLED")
        return 2
    for task in tasks:
        task.start()
    stop = threading.Event()
    try:
        stop.wait()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        for task in tasks:
            task.cancel()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sales-sync", description="Sales report ingestion and reconciliation."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors.")
    parser.add_argument(
        "--data-root",
        type=Path,
        default=None,
        help="Root directory for records and checkpoints (default: $SALES_DATA_ROOT or 'data').",
    )
    parser.add_argument(
        "--staff-directory",
        type=Path,
        default=None,
        help="JSON staff directory: [{\"id\": ..., \"name\": ...}] or {id: name}.",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("upload", help="Ingest a report file (strict mode).")
    p.add_argument("file", type=Path)
    p.add_argument("--kind", choices=["online", "pos"], required=True)
    p.add_argument("--staff-map", type=Path, default=None,
                   help="JSON object mapping order reference to staff name.")
    p.add_argument("--expected-rows", type=int, default=None,
                   help="Row count seen by the uploader; a mismatch only warns.")
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser("poll-mail", help="Run one mailbox poll.")
    p.set_defaults(func=cmd_poll_mail)

    p = sub.add_parser("poll-drive", help="Run one drive folder poll.")
    p.set_defaults(func=cmd_poll_drive)

    p = sub.add_parser("serve", help="Run the enabled pollers on their schedules.")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("staff-ids", help="List staff ids referenced in a report.")
    p.add_argument("file", type=Path)
    p.add_argument("--kind", choices=["online", "pos"], default="online")
    p.set_defaults(func=cmd_staff_ids)

    p = sub.add_parser("backfill-staff", help="Attach staff names to stored records.")
    p.add_argument("staff_map", type=Path,
                   help="JSON object mapping order reference to staff name.")
    p.add_argument("--kind", choices=["online", "pos"], default="online")
    p.set_defaults(func=cmd_backfill_staff)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        config = SyncConfig.from_env()
        if args.data_root is not None:
            config.data_root = args.data_root
        return args.func(args, config)
    except SalesSyncError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
