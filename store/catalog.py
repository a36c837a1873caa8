# store/catalog.py
import logging
import re
from pymongo import DESCENDING
from .errors import NotFound, ValidationError
from .utils import new_id, utcnow

logger = logging.getLogger("store")

SEARCH_LIMIT = 20
SEARCH_FIELDS = ("title", "author", "description")


def _contains(text):
    """Case-insensitive substring match; the text is matched literally."""
    return {"$regex": re.escape(text), "$options": "i"}


def build_book_query(search=None, genre=None, author=None, featured=None):
    """
    Build a MongoDB filter for the catalog listing.

    Every option is optional and the ones given are combined with AND.

    Args:
        search (str, optional): Substring matched against title, author and
            description, case-insensitive
        genre (str, optional): Exact match against any element of the
            book's genre list
        author (str, optional): Substring matched against the author,
            case-insensitive
        featured (bool, optional): Exact match on the featured flag

    Returns:
        dict: Query document for ``db.books.find``
    """
    q = {}
    if search:
        q["$or"] = [{f: _contains(search)} for f in SEARCH_FIELDS]
    if genre:
        q["genre"] = genre
    if author:
        q["author"] = _contains(author)
    if featured is not None:
        q["featured"] = featured
    return q


async def list_books(db, filters=None, page=None, page_size=None):
    """
    List catalog books matching the given filters, newest first.

    Without ``page`` the whole matching set is returned. With ``page`` an
    offset window of ``page_size`` books is returned instead.

    Args:
        db: Database handle
        filters (dict, optional): Keyword arguments for build_book_query()
        page (int, optional): 1-indexed page number
        page_size (int, optional): Books per page, defaults to 20

    Returns:
        tuple: (books, total) where total counts all matching books
    """
    q = build_book_query(**(filters or {}))
    cursor = db.books.find(q).sort([("created_at", DESCENDING)])

    if page is None:
        docs = await cursor.to_list(length=None)
        return docs, len(docs)

    page_size = page_size or 20
    total = await db.books.count_documents(q)
    docs = await cursor.skip((page - 1) * page_size).limit(page_size).to_list(
        length=page_size
    )
    return docs, total


async def search_books(db, q):
    if not q or not q.strip():
        raise ValidationError("Search query is required")
    cursor = db.books.find(build_book_query(search=q.strip()))
    return await cursor.limit(SEARCH_LIMIT).to_list(length=SEARCH_LIMIT)


async def list_genres(db):
    """Return the distinct, non-empty genre values in the catalog, sorted."""
    genres = await db.books.distinct("genre")
    return sorted(g for g in genres if g)


async def get_book(db, book_id):
    doc = await db.books.find_one({"_id": book_id})
    if not doc:
        raise NotFound("Book not found")
    return doc


async def create_book(db, payload):
    """
    Insert a new book from a BookCreate payload.

    The derived rating fields always start at zero regardless of input;
    only the recompute step writes them afterwards.

    Returns:
        dict: The stored book document
    """
    now = utcnow()
    doc = payload.model_dump()
    doc.update(
        {
            "_id": new_id(),
            "average_rating": 0,
            "total_reviews": 0,
            "created_at": now,
            "updated_at": now,
        }
    )
    await db.books.insert_one(doc)
    logger.info(f"Created book {doc['_id']} ({doc['title']})")
    return doc
