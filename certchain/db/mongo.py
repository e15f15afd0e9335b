"""
MongoDB connection and database utilities.
Provides async MongoDB connection using Motor driver.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional

from ..core.config import Settings
from ..utils.logger import get_logger

logger = get_logger("database")

# Global MongoDB client instance
_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo(settings: Settings) -> AsyncIOMotorDatabase:
    """
    Create database connection to MongoDB.
    Should be called once during application startup.

    Args:
        settings: Application settings holding the connection string and timeouts

    Returns:
        The connected database
    """
    global _client, _database

    try:
        _client = AsyncIOMotorClient(
            settings.mongodb_url,
            tz_aware=True,
            serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
            connectTimeoutMS=settings.mongodb_timeout_ms,
            socketTimeoutMS=settings.mongodb_timeout_ms,
        )
        _database = _client[settings.database_name]

        # Test the connection
        await _client.admin.command('ping')
        logger.info(f"Successfully connected to MongoDB at {settings.mongodb_url}")
        logger.info(f"Using database: {settings.database_name}")

    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        raise

    return _database


async def close_mongo_connection():
    """
    Close database connection.
    Should be called during application shutdown.
    """
    global _client, _database

    if _client:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")
