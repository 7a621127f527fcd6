#!/usr/bin/env python3
"""
Fill a message database with sample messages for trying out the display.

Usage:
    pushall-seed --db ~/pushall-test.db
    pushall-seed --db ~/pushall-test.db --count 40 --clear
"""
import argparse
import asyncio
import sys

from .logging_setup import get_logger, setup_logging
from .models import Level, Message, PushPayload
from .sqlite_storage import SQLiteStorage, create_sqlite_storage

logger = get_logger(__name__)

SAMPLE_PUSHERS = ["b0sh", "alice", "bob", "system"]
SAMPLE_TYPES = ["info", "alert", "notification", "reminder"]
SAMPLE_LEVELS = [Level.INFO, Level.WARNING, Level.SUCCESS, Level.CRITICAL]


def sample_messages(count: int = 16) -> list[PushPayload]:
    """Deterministic sample payloads numbered 1..count."""
    return [
        PushPayload(
            msg=f"Sample message {i}",
            pusher=SAMPLE_PUSHERS[i % len(SAMPLE_PUSHERS)],
            type=SAMPLE_TYPES[i % len(SAMPLE_TYPES)],
            level=SAMPLE_LEVELS[i % len(SAMPLE_LEVELS)],
            date=f"2026-01-21 10:{i % 60:02d}:00",
        )
        for i in range(1, count + 1)
    ]


async def seed_sample_messages(storage: SQLiteStorage, count: int = 16) -> list[Message]:
    """Append `count` sample messages and return the stored rows."""
    stored = [await storage.append(payload) for payload in sample_messages(count)]
    logger.info("Inserted %d sample messages", len(stored))
    return stored


async def seed(db_path: str, count: int, clear: bool = False) -> int:
    storage = await create_sqlite_storage(db_path)
    try:
        if clear:
            await storage.clear()
        await seed_sample_messages(storage, count)
        total = await storage.count()
        size_mb = await storage.get_storage_size_mb()
        logger.info("  Total in database: %d", total)
        logger.info("  Database size: %.2f MB", size_mb)
        return total
    finally:
        await storage.close()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Insert sample messages into a pushall database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    pushall-seed --db ~/pushall-test.db
    pushall-seed --db ~/pushall-test.db --count 40 --clear
        """,
    )
    parser.add_argument(
        "--db",
        "-d",
        required=True,
        help="Path of the SQLite database",
    )
    parser.add_argument(
        "--count",
        "-c",
        type=int,
        default=16,
        help="Number of sample messages (default: 16)",
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Delete existing messages first (ids restart at 1)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()
    setup_logging(verbose=args.verbose, simple_format=True)

    if args.count < 1:
        logger.error("--count must be at least 1")
        sys.exit(1)

    total = asyncio.run(seed(args.db, args.count, args.clear))
    logger.info("Done, %d messages in %s", total, args.db)


if __name__ == "__main__":
    main()
