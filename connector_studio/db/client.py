"""
MongoDB client initialization.

This module connects to MongoDB using Motor (the async MongoDB driver for
Python). The client and database handles are returned to the caller, which
keeps them on the application state; nothing is stored at module level.

Usage example:
    >>> from connector_studio.core.config import Settings
    >>> client, db = init_mongo(Settings())
    >>> print(await db.list_collection_names())
"""

import logging
from typing import Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from connector_studio.core.config import Settings

logger = logging.getLogger(__name__)


def init_mongo(settings: Settings) -> Tuple[AsyncIOMotorClient, AsyncIOMotorDatabase]:
    """
    Create the MongoDB client and select the configured database.

    The client is timezone-aware so that `createdAt`/`updatedAt` round-trip
    as UTC datetimes.

    Args:
        settings (Settings): Application settings (`mongodb_uri`, `mongodb_db`).

    Returns:
        tuple: The client (to close on shutdown) and the database handle.
    """

    client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
    db = client[settings.mongodb_db]
    logger.info("Connected to MongoDB at %s, using database '%s'", settings.mongodb_uri, settings.mongodb_db)
    return client, db


async def ensure_indexes(db: AsyncIOMotorDatabase, collection: str) -> None:
    """Index used by the connector listing (ordered by creation time)."""

    await db[collection].create_index("createdAt")
