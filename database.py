import logging
from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from config import settings
from errors import ValidationError

logger = logging.getLogger(__name__)

_client = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(settings.mongo_url)
    return _client


def get_db():
    """FastAPI dependency returning the library database."""
    return get_client()[settings.mongo_db]


def close_client():
    global _client
    if _client is not None:
        _client.close()
        _client = None


def obj_to_str(obj):
    return str(obj) if isinstance(obj, ObjectId) else obj


def parse_object_id(value, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label + ' ' if label else ''}ID format")


def utcnow() -> datetime:
    # Naive UTC at millisecond precision, which is what MongoDB hands back
    return to_utc(datetime.now(timezone.utc))


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


async def ensure_indexes(db):
    await db.users.create_index("membership_id", unique=True)
    await db.users.create_index("phone", unique=True)
    await db.books.create_index([("created_at", DESCENDING)])
    await db.borrowings.create_index("token_number", unique=True)
    await db.borrowings.create_index("open_key", unique=True, sparse=True)
    await db.borrowings.create_index([("user_id", ASCENDING), ("status", ASCENDING)])
    await db.borrowings.create_index([("book_id", ASCENDING), ("status", ASCENDING)])
    await db.borrowings.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Database indexes ensured")


async def test_connection():
    try:
        await get_client().admin.command("ping")
        logger.info("MongoDB connection successful")
    except Exception:
        logger.exception("MongoDB connection failed")
        raise
