#!/usr/bin/env python3
"""
Purge stale entries from the automation queue.

The queue has no automatic expiry: a client that crashes mid-run leaves its
entry behind and everyone queued after it keeps waiting. This script removes
entries that joined more than the given number of minutes ago.

Usage:
    python purge_queue.py 30                        # Purge entries older than 30 minutes
    python purge_queue.py 30 sqlite:////srv/q.db    # Against a specific database
    python purge_queue.py --list                    # Show the queue without purging
"""

import sys

from saleshub_automation.broadcast import NoOpBroadcaster
from saleshub_automation.config import Config
from saleshub_automation.database import create_db_engine, create_session_factory
from saleshub_automation.queue_service import QueueService
from saleshub_automation.queue_store import SQLAlchemyQueueRepository


def build_service(database_url: str) -> QueueService:
    engine = create_db_engine(database_url)
    repository = SQLAlchemyQueueRepository(create_session_factory(engine))
    return QueueService(repository, broadcaster=NoOpBroadcaster())


def print_queue(service: QueueService) -> None:
    snapshot = service.list_queue()
    if snapshot.error:
        print(f"Error: {snapshot.error}")
        sys.exit(1)
    if not snapshot.queue:
        print("  Queue is empty")
    for position, entry in enumerate(snapshot.queue):
        print(f"  {position}. {entry.user_name} ({entry.user_id}) - {entry.process_type} - joined {entry.joined_at}")


def main():
    """Main entry point."""
    if len(sys.argv) < 2:
        print("Usage: python purge_queue.py <max_age_minutes> [database_url]")
        print("       python purge_queue.py --list [database_url]")
        sys.exit(1)

    database_url = sys.argv[2] if len(sys.argv) > 2 else Config.QUEUE_DATABASE_URL
    service = build_service(database_url)

    print("=" * 60)
    print("Automation Queue Purge")
    print("=" * 60)
    print(f"Database: {database_url}")
    print("=" * 60)

    if sys.argv[1] == "--list":
        print_queue(service)
        return

    try:
        max_age_minutes = float(sys.argv[1])
    except ValueError:
        print(f"Error: max_age_minutes must be a number, got {sys.argv[1]!r}")
        sys.exit(1)

    if max_age_minutes <= 0:
        response = input("\nWARNING: This will remove EVERY queue entry!\nContinue? (yes/no): ")
        if response.lower() != "yes":
            print("Cancelled.")
            sys.exit(0)

    removed = service.purge_stale(max_age_minutes * 60)
    print(f"\nPurge complete: {removed} stale entr{'y' if removed == 1 else 'ies'} removed")
    print("Remaining queue:")
    print_queue(service)


if __name__ == "__main__":
    main()
