"""
Database connection and configuration

Fails fast with clear error messages if MONGO_URL or DB_NAME is missing.
Collections used by the licensing backend:
- accounts, purchases (read/write)
- songs, contents (read-only from the entitlement core)
"""
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

REQUIRED_ENV_VARS = {
    "MONGO_URL": "MongoDB connection string (e.g., mongodb://localhost:27017)",
    "DB_NAME": "Database name (e.g., echotune)"
}


def validate_required_env_vars():
    """
    Validate the database environment variables exist before the app starts.
    Raises ValueError listing every missing variable.
    """
    missing = [
        f"  - {var}: {description}"
        for var, description in REQUIRED_ENV_VARS.items()
        if not os.environ.get(var)
    ]

    if missing:
        error_msg = (
            "\n" + "=" * 60 + "\n"
            "CRITICAL: Missing required environment variables!\n"
            "=" * 60 + "\n"
            "The following environment variables must be set:\n\n"
            + "\n".join(missing) + "\n\n"
            "Please check backend/.env or the deployment environment.\n"
            + "=" * 60
        )
        raise ValueError(error_msg)


validate_required_env_vars()

DB_NAME = os.environ['DB_NAME']

try:
    client = AsyncIOMotorClient(
        os.environ['MONGO_URL'],
        maxPoolSize=50,
        connectTimeoutMS=5000,
        serverSelectionTimeoutMS=5000,
        retryWrites=True
    )
except Exception as e:
    raise ValueError(f"Failed to create MongoDB client: {e}")

db = client[DB_NAME]


async def check_db_connection():
    """
    Ping the database.

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    try:
        await client.admin.command('ping')
        logger.info(f"Database connected successfully: {DB_NAME}")
        return True, None
    except Exception as e:
        error_msg = f"Database connection failed: {e}"
        logger.error(error_msg)
        return False, error_msg
