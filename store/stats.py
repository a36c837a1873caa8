# store/stats.py
import logging
from .models import UserStats
from .utils import round_rating

logger = logging.getLogger("store")


async def compute_user_stats(db, user_id):
    """
    Aggregate review statistics for a single user.

    Scans the reviews written by the user and derives the review count,
    the number of distinct books reviewed and the mean rating given.

    Args:
        db: Database handle exposing a ``reviews`` collection
        user_id (str): Author id

    Returns:
        UserStats: ``total_reviews``, ``unique_books_reviewed`` and
            ``average_rating`` (one decimal, round-half-up). An unknown user
            or a user without reviews yields all zeros.
    """
    docs = await db.reviews.find(
        {"user_id": user_id}, {"book_id": 1, "rating": 1}
    ).to_list(length=None)

    total = len(docs)
    return UserStats(
        total_reviews=total,
        unique_books_reviewed=len({d["book_id"] for d in docs}),
        average_rating=round_rating(sum(d["rating"] for d in docs), total),
    )


async def compute_book_rating(db, book_id):
    """
    Derive a book's average rating and review count from its reviews.

    Returns:
        tuple: (average_rating, total_reviews), both 0 for a book without
            reviews
    """
    docs = await db.reviews.find({"book_id": book_id}, {"rating": 1}).to_list(
        length=None
    )
    total = len(docs)
    return round_rating(sum(d["rating"] for d in docs), total), total


async def recompute_book_rating(db, book_id):
    """
    Recompute and persist a book's ``average_rating`` and ``total_reviews``.

    Must run after every review create, update or delete touching the book.
    The result depends only on the current set of reviews, so repeated
    calls without an intervening review mutation leave the book unchanged.

    Args:
        db: Database handle exposing ``books`` and ``reviews``
        book_id (str): Book to refresh

    Returns:
        tuple: (average_rating, total_reviews) that were written
    """
    average, total = await compute_book_rating(db, book_id)
    await db.books.update_one(
        {"_id": book_id},
        {"$set": {"average_rating": average, "total_reviews": total}},
    )
    logger.info(f"Recomputed rating for book {book_id}: {average} ({total} reviews)")
    return average, total


async def recompute_all_ratings(db):
    """
    Recompute the rating of every book in the catalog.

    Used by the reconciliation job to repair ratings left stale by writes
    made outside the API.

    Returns:
        int: Number of books processed
    """
    books = await db.books.find({}, {"_id": 1}).to_list(length=None)
    for b in books:
        await recompute_book_rating(db, b["_id"])
    return len(books)
