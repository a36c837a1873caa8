# seed/seeder.py
import asyncio
import os
from datetime import datetime, timezone
from httpx import AsyncClient, HTTPError
from store.db import get_db, ensure_indexes
from store.utils import network_retry, new_id
from dotenv import load_dotenv
import logging

load_dotenv()
GOOGLE_BOOKS_URL = os.getenv(
    "GOOGLE_BOOKS_URL", "https://www.googleapis.com/books/v1/volumes"
)
SEED_QUERY = os.getenv("SEED_QUERY", "subject:fiction")
SEED_MAX_RESULTS = int(os.getenv("SEED_MAX_RESULTS", "15"))
RETRIES = int(os.getenv("SEED_RETRIES", "3"))

logger = logging.getLogger("seeder")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


def parse_publication_date(value):
    """
    Parse a Google Books ``publishedDate`` into a UTC datetime.

    Google reports dates as ``YYYY``, ``YYYY-MM`` or ``YYYY-MM-DD``; missing
    parts default to the first month/day.

    Returns:
        datetime or None: None when the value is missing or unparseable
    """
    if not value:
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m", "%Y"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def volume_to_book(item):
    """
    Map a Google Books volume to a catalog book document.

    Args:
        item (dict): One element of the API's ``items`` array

    Returns:
        dict: Book document ready for insertion, featured and with zeroed
            rating fields

    Field Mapping:
        - title: volumeInfo.title, "Untitled" when missing
        - author: first of volumeInfo.authors, "Unknown" when missing
        - description: volumeInfo.description, "No description." when missing
        - genre: volumeInfo.categories
        - cover_image: imageLinks.thumbnail
        - isbn: ISBN_13 identifier, falling back to ISBN_10
        - pages: pageCount
        - language: "English" for "en", otherwise the raw language code
    """
    info = item.get("volumeInfo", {})
    identifiers = {
        i.get("type"): i.get("identifier")
        for i in info.get("industryIdentifiers", [])
    }
    language = info.get("language")
    now = datetime.now(timezone.utc)
    return {
        "_id": new_id(),
        "title": info.get("title") or "Untitled",
        "author": (info.get("authors") or ["Unknown"])[0],
        "description": info.get("description") or "No description.",
        "isbn": identifiers.get("ISBN_13") or identifiers.get("ISBN_10"),
        "cover_image": (info.get("imageLinks") or {}).get("thumbnail"),
        "publication_date": parse_publication_date(info.get("publishedDate")),
        "genre": info.get("categories") or [],
        "pages": info.get("pageCount"),
        "language": "English" if language in (None, "en") else language,
        "featured": True,
        "average_rating": 0,
        "total_reviews": 0,
        "created_at": now,
        "updated_at": now,
    }


class Seeder:
    def __init__(self, query=SEED_QUERY, max_results=SEED_MAX_RESULTS):
        self.query = query
        self.max_results = max_results
        self.client = AsyncClient(timeout=30.0)

    async def close(self):
        """Close the HTTP client and release resources."""
        await self.client.aclose()

    @network_retry(attempts=RETRIES, exceptions=(HTTPError,))
    async def fetch_volumes(self):
        """
        Fetch volumes matching the seed query from the Google Books API.

        Retries transient HTTP failures with exponential backoff (see
        network_retry) and re-raises once attempts are exhausted.

        Returns:
            list[dict]: The ``items`` array, empty when Google returns none
        """
        resp = await self.client.get(
            GOOGLE_BOOKS_URL,
            params={"q": self.query, "maxResults": self.max_results},
        )
        resp.raise_for_status()
        return resp.json().get("items") or []

    async def run(self, db=None):
        """
        Seed the catalog when it is empty.

        Returns:
            int: Number of books inserted; 0 when the catalog already had
                books
        """
        db = db if db is not None else get_db()
        count = await db.books.count_documents({})
        if count:
            logger.info(f"Catalog already has {count} books, skipping seed")
            return 0

        items = await self.fetch_volumes()
        books = [volume_to_book(i) for i in items]
        if books:
            await db.books.insert_many(books)
        logger.info(f"Sample books seeded: {len(books)}")
        return len(books)


# convenience script
async def main():
    await ensure_indexes()
    s = Seeder()
    try:
        await s.run()
    finally:
        await s.close()


if __name__ == "__main__":
    asyncio.run(main())
