#!/usr/bin/env python3
"""
Copy pinned workout memos from a local-storage dump into Firestore.

Older clients kept each student's workout memos only in the browser
under pinnedExercises_{name}. Export that storage as a JSON object
(key -> string value) and run this script to create the matching
pinnedMemos/{name} documents. Owners that already have a document are
left alone, so the script is safe to re-run.

Usage:
    python scripts/migrate_pinned_memos.py --file storage_dump.json
    python scripts/migrate_pinned_memos.py --file storage_dump.json --dry-run

Requires:
    - .env file with FIRESTORE_PROJECT_ID (and FIRESTORE_CREDENTIALS_FILE
      unless application default credentials are set up)
"""

import asyncio
import json
import os
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.config.settings import get_settings
from src.core.errors import InitializationError
from src.core.traininglog.context import TrainingLogContext
from src.core.traininglog.records import RecordsSync
from src.core.traininglog.state import StateStore
from src.infrastructure.firestore.client import FirestoreConfig, create_document_store
from src.infrastructure.local_storage.client import InMemoryStorage

PINNED_PREFIX = "pinnedExercises_"


def load_dump(filepath: str) -> dict[str, str]:
    """
    Read a local-storage dump.

    Values that are not strings are re-serialized, since some export
    tools decode the JSON values they find.
    """
    with open(filepath, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError("Dump must be a JSON object of key -> value")

    return {
        str(key): value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        for key, value in data.items()
    }


def owners_in_dump(dump: dict[str, str]) -> list[str]:
    return sorted(
        key[len(PINNED_PREFIX):] for key in dump
        if key.startswith(PINNED_PREFIX) and len(key) > len(PINNED_PREFIX)
    )


async def migrate(dump: dict[str, str], dry_run: bool = False) -> bool:
    owners = owners_in_dump(dump)
    if dry_run:
        print("\n=== DRY RUN - Nothing will be written ===\n")
        for owner in owners:
            try:
                count = len(json.loads(dump[PINNED_PREFIX + owner]))
            except (ValueError, TypeError):
                count = 0
            print(f"Would migrate: {owner} ({count} memos)")
        print(f"\nTotal: {len(owners)} owners")
        return True

    settings = get_settings()
    try:
        documents = create_document_store(
            config=FirestoreConfig(
                project_id=settings.firestore_project_id,
                credentials_file=settings.firestore_credentials_file,
                credentials_json=settings.firestore_credentials_json,
            ),
            mock_mode=settings.firestore_mock_mode,
        )
    except InitializationError as e:
        print(f"ERROR connecting to Firestore: {e}")
        return False

    ctx = TrainingLogContext(state=StateStore(), documents=documents, local=InMemoryStorage(dump))
    records = RecordsSync(ctx)

    migrated = 0
    skipped = 0
    errors = 0

    for owner in owners:
        try:
            if await records.migrate_local_storage_to_firestore(owner):
                migrated += 1
                print(f"[OK] Migrated: {owner}")
            else:
                skipped += 1
                print(f"[SKIP] {owner}: already in Firestore or nothing to copy")
        except Exception as e:
            errors += 1
            print(f"[ERR] Error migrating {owner}: {e}")

    print(f"\n=== Migration Complete ===")
    print(f"Migrated: {migrated}")
    print(f"Skipped: {skipped}")
    print(f"Errors: {errors}")

    return errors == 0


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Migrate local pinned workout memos to Firestore')
    parser.add_argument('--dry-run', action='store_true', help='List owners only, don\'t write')
    parser.add_argument('--file', required=True, help='Local storage dump (JSON object)')
    args = parser.parse_args()

    if not os.path.exists(args.file):
        print(f"ERROR: Cannot find {args.file}")
        sys.exit(1)

    print(f"Reading local storage dump: {args.file}")
    try:
        dump = load_dump(args.file)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    owners = owners_in_dump(dump)
    print(f"Found pinned memos for {len(owners)} owners")

    if not owners:
        print("Nothing to migrate")
        sys.exit(0)

    success = asyncio.run(migrate(dump, dry_run=args.dry_run))

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
