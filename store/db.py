# store/db.py
import os
import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "book_reviews")

logger = logging.getLogger("store")
logger.setLevel(logging.INFO)

_client = None
_db = None


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


def close_client():
    """Close the Motor client and forget the cached database handle."""
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes(db=None):
    """
    Create the indexes the application relies on.

    The compound unique index on reviews is what enforces "one review per
    user per book": concurrent inserts for the same pair resolve to a single
    document and a DuplicateKeyError for the loser.

    Args:
        db: Database handle. Defaults to get_db().

    Indexes:
        - reviews: (book_id, user_id) unique
        - reviews: (user_id, created_at desc)
        - users: username unique, email unique
        - books: created_at desc
    """
    db = db if db is not None else get_db()
    await db.reviews.create_index(
        [("book_id", ASCENDING), ("user_id", ASCENDING)],
        unique=True,
        name="uniq_review_per_user_book",
    )
    await db.reviews.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db.users.create_index([("username", ASCENDING)], unique=True)
    await db.users.create_index([("email", ASCENDING)], unique=True)
    await db.books.create_index([("created_at", DESCENDING)])
    logger.info("MongoDB indexes ensured")
