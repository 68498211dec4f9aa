"""
Entitlements Database Initialization Script

Rules:
1. Environment Guard - requires APP_ENV and ENTITLEMENTS_INIT_CONFIRM=YES for production
2. Idempotent - running multiple times must not duplicate anything
3. No destructive operations - no dropping, deleting, truncation
4. Safe index creation - handles "index already exists" gracefully
5. Dry-run mode - --dry-run prints what it would do
6. Version stamp - tracks init version

The unique indexes below carry the purchase invariants:
one purchase document per (buyer, item) and globally unique license codes.

Usage:
    CLI one-off: python -m entitlements.db_init
    With dry-run: python -m entitlements.db_init --dry-run
    In production: APP_ENV=production ENTITLEMENTS_INIT_CONFIRM=YES python -m entitlements.db_init
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import CollectionInvalid, OperationFailure

logger = logging.getLogger(__name__)

# Version tracking
INIT_VERSION = "v1.0.0"

# Collections to create (if not exist)
REQUIRED_COLLECTIONS = [
    "accounts",
    "purchases",
    "songs",
    "contents",
    "entitlements_meta"  # For version tracking
]

# Index definitions: (collection, index_spec, options)
REQUIRED_INDEXES = [
    # accounts indexes
    ("accounts", [("id", 1)], {"unique": True, "name": "idx_id_unique"}),
    ("accounts", [("email", 1)], {"unique": True, "name": "idx_email_unique"}),

    # purchases indexes
    ("purchases", [("id", 1)], {"unique": True, "name": "idx_id_unique"}),
    (
        "purchases",
        [("user_id", 1), ("item_type", 1), ("item_id", 1)],
        {"unique": True, "name": "idx_buyer_item_unique"}
    ),
    (
        "purchases",
        [("license_code", 1)],
        {
            "unique": True,
            "partialFilterExpression": {"license_code": {"$gt": ""}},
            "name": "idx_license_code_unique"
        }
    ),
    ("purchases", [("user_id", 1), ("status", 1), ("purchased_at", -1)], {"name": "idx_user_status_purchased"}),
    ("purchases", [("owner_id", 1), ("status", 1)], {"name": "idx_owner_status"}),

    # asset indexes
    ("songs", [("id", 1)], {"unique": True, "name": "idx_id_unique"}),
    ("songs", [("owner_id", 1)], {"name": "idx_owner_id"}),
    ("contents", [("id", 1)], {"unique": True, "name": "idx_id_unique"}),
    ("contents", [("owner_id", 1)], {"name": "idx_owner_id"}),
]


def check_environment() -> Tuple[bool, str]:
    """
    Check environment and confirm if production execution is allowed.

    Returns:
        Tuple of (allowed, message)
    """
    app_env = os.environ.get("APP_ENV", os.environ.get("ENVIRONMENT", "development"))

    if app_env.lower() == "production":
        confirm = os.environ.get("ENTITLEMENTS_INIT_CONFIRM", "")
        if confirm != "YES":
            return False, (
                "PRODUCTION ENVIRONMENT DETECTED!\n"
                "To run init in production, set: ENTITLEMENTS_INIT_CONFIRM=YES\n"
                f"Current value: ENTITLEMENTS_INIT_CONFIRM='{confirm}'"
            )

    return True, f"Environment: {app_env}"


async def create_collection_if_not_exists(db, collection_name: str, dry_run: bool = False) -> str:
    """Create a collection if it doesn't exist."""
    existing = await db.list_collection_names()

    if collection_name in existing:
        return f"  [SKIP] Collection '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create collection '{collection_name}'"

    try:
        await db.create_collection(collection_name)
        return f"  [CREATE] Created collection '{collection_name}'"
    except CollectionInvalid:
        return f"  [SKIP] Collection '{collection_name}' already exists (race)"


async def create_index_if_not_exists(
    db,
    collection_name: str,
    index_spec: List[Tuple],
    options: dict,
    dry_run: bool = False
) -> str:
    """Create an index if it doesn't exist."""
    collection = db[collection_name]
    index_name = options.get("name", str(index_spec))

    existing_indexes = await collection.index_information()

    if index_name in existing_indexes:
        return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create index '{index_name}' on '{collection_name}'"

    try:
        await collection.create_index(index_spec, **options)
        return f"  [CREATE] Created index '{index_name}' on '{collection_name}'"
    except OperationFailure as e:
        if "already exists" in str(e).lower():
            return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists (race)"
        raise


async def update_version_stamp(db, dry_run: bool = False) -> str:
    """Update or create version stamp document."""
    if dry_run:
        return f"  [DRY-RUN] Would update version stamp to {INIT_VERSION}"

    await db.entitlements_meta.update_one(
        {"_id": "entitlements_init"},
        {
            "$set": {
                "version": INIT_VERSION,
                "applied_at": datetime.now(timezone.utc).isoformat()
            }
        },
        upsert=True
    )
    return f"  [UPDATE] Version stamp updated to {INIT_VERSION}"


async def ensure_schema(db, dry_run: bool = False) -> List[str]:
    """Create collections, indexes and the version stamp; returns log lines."""
    results = []
    for collection_name in REQUIRED_COLLECTIONS:
        results.append(await create_collection_if_not_exists(db, collection_name, dry_run))
    for collection_name, index_spec, options in REQUIRED_INDEXES:
        results.append(await create_index_if_not_exists(db, collection_name, index_spec, options, dry_run))
    results.append(await update_version_stamp(db, dry_run))
    return results


async def run_init(dry_run: bool = False):
    """Run the database initialization."""
    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / '.env'
    load_dotenv(env_path)

    allowed, env_message = check_environment()
    logger.info(env_message)

    if not allowed:
        logger.error(env_message)
        logger.error("Init blocked due to environment guard")
        sys.exit(1)

    mongo_url = os.environ.get('MONGO_URL')
    db_name = os.environ.get('DB_NAME')

    if not mongo_url or not db_name:
        logger.error("Missing MONGO_URL or DB_NAME environment variables")
        sys.exit(1)

    logger.info(f"Database: {db_name}")
    logger.info(f"Dry Run: {dry_run}")
    logger.info("-" * 50)

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection: OK")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        sys.exit(1)

    for line in await ensure_schema(db, dry_run):
        logger.info(line)

    client.close()

    logger.info("=" * 50)
    logger.info("SUCCESS: Entitlements DB init completed")
    logger.info("=" * 50)


def main():
    """Main entry point."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="Entitlements Database Initialization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Development (default)
    python -m entitlements.db_init

    # Dry run (no changes)
    python -m entitlements.db_init --dry-run

    # Production
    APP_ENV=production ENTITLEMENTS_INIT_CONFIRM=YES python -m entitlements.db_init
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without making changes'
    )

    args = parser.parse_args()

    asyncio.run(run_init(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
