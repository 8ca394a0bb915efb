#!/usr/bin/env python3
"""
CLI entrypoint for migrating legacy local note files to remote storage.

    noteflow-backfill [--dry-run] [--limit N]
    python -m noteflow.cli.backfill [--dry-run] [--limit N]

Exit status:
    0  the run completed (individual records may still have been skipped)
    1  configuration is missing or the record store is unreachable
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from noteflow.config import Settings
from noteflow.database import Database
from noteflow.dependencies import build_components
from noteflow.exceptions import ConfigurationError, RecordStoreUnavailableError
from noteflow.logging_config import setup_logging
from noteflow.services.backfill import BackfillCursor, BackfillJob
from noteflow.services.note_store import NoteRecordStore, PendingNote

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="noteflow-backfill",
        description="Upload notes that only exist on local disk and record their durable URLs",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be migrated. Uploads nothing and writes nothing.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=0,
        help="Stop after this many records are migrated (0 = no limit)",
    )
    args = parser.parse_args(argv)
    if args.limit < 0:
        parser.error("--limit must be >= 0")
    return args


def print_record(note: PendingNote, status: str, detail: str) -> None:
    line = f"{status:<28} {note.id}  {note.title}"
    if detail:
        line += f"  ({detail})"
    print(line)


def print_report(cursor: BackfillCursor, dry_run: bool) -> None:
    print("---")
    print(f"Scanned: {cursor.scanned}")
    print(f"Migrated: {cursor.migrated}{' (dry-run)' if dry_run else ''}")
    print(f"Skipped (missing local file): {cursor.skipped_missing_local_file}")
    print(f"Skipped (no file path): {cursor.skipped_no_source_path}")
    print(f"Skipped (too large): {cursor.skipped_too_large}")
    print(f"Skipped (compression failed): {cursor.skipped_compression_failed}")
    print(f"Failed: {cursor.failed}")


async def run_backfill(settings: Settings, dry_run: bool, limit: int) -> BackfillCursor:
    """
    Wire the job from settings, run it, and release every resource.

    Raises:
        ConfigurationError: remote store credentials or uploads directory missing
        RecordStoreUnavailableError: database unreachable
    """
    settings.validate_required_for_production()

    uploads_root = Path(settings.uploads_root)
    if not uploads_root.is_dir():
        raise ConfigurationError(
            message=f"Uploads folder not found: {uploads_root.resolve()}",
            context={"uploads_root": str(uploads_root)},
        )

    database = Database.from_settings(settings)
    components = build_components(settings)
    try:
        store = NoteRecordStore(database.session_factory)
        await store.ping()
        job = BackfillJob(
            store=store,
            intake=components.intake,
            uploads_root=uploads_root,
            object_store=components.object_store,
            on_record=print_record,
        )
        return await job.run(dry_run=dry_run, limit=limit)
    finally:
        await components.aclose()
        await database.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = Settings()
    setup_logging(settings.log_level)

    try:
        cursor = asyncio.run(run_backfill(settings, dry_run=args.dry_run, limit=args.limit))
    except ConfigurationError as error:
        logger.error("Configuration error: %s", error.message)
        print(error.message, file=sys.stderr)
        return 1
    except RecordStoreUnavailableError as error:
        logger.error("Record store unavailable: %s | %s", error.message, error.context)
        print(f"{error.message}: {error.context.get('error', '')}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Backfill interrupted by user")
        return 1

    print_report(cursor, dry_run=args.dry_run)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
