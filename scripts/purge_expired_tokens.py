"""
Delete blacklist entries and refresh-token records whose expiry has passed.

Usage:
    python scripts/purge_expired_tokens.py [--dry-run]
"""
import os
import sys
import argparse

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from hrms.db import SessionLocal
from hrms.errors import StorageError
from hrms.storage.database import DatabaseStorage


def purge(dry_run: bool = False) -> dict:
    db = SessionLocal()
    try:
        counts = DatabaseStorage(db).purge_expired_tokens(dry_run=dry_run)
    finally:
        db.close()
    prefix = "[DRY-RUN] Would delete" if dry_run else "Deleted"
    print(f"{prefix} {counts['blacklist']} blacklist entries and {counts['refresh_tokens']} refresh tokens.")
    return counts


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge expired token blacklist and refresh-token rows")
    parser.add_argument("--dry-run", action="store_true", help="Report counts without deleting")
    args = parser.parse_args()
    try:
        purge(dry_run=args.dry_run)
    except StorageError as e:
        print(f"[ERROR] {e.message} ({e.storage_code})")
        sys.exit(1)
