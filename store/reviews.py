# store/reviews.py
import logging
import math
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError
from .errors import (
    DuplicateReview,
    InvalidRating,
    NotFound,
    ValidationError,
)
from .stats import recompute_book_rating
from .utils import new_id, utcnow

logger = logging.getLogger("store")

MIN_RATING = 1
MAX_RATING = 5
MIN_COMMENT_LENGTH = 10
PROFILE_REVIEW_LIMIT = 10


def validate_rating(rating):
    # bool is an int subclass; True must not pass as a 1-star rating
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidRating()
    if rating < MIN_RATING or rating > MAX_RATING:
        raise InvalidRating()
    return rating


def validate_comment(comment):
    comment = (comment or "").strip()
    if len(comment) < MIN_COMMENT_LENGTH:
        raise ValidationError(
            f"Comment must be at least {MIN_COMMENT_LENGTH} characters long"
        )
    return comment


async def _attach_users(db, reviews):
    """Attach ``user: {_id, username}`` to each review, in place."""
    ids = list({r["user_id"] for r in reviews})
    users = {}
    for uid in ids:
        u = await db.users.find_one({"_id": uid})
        if u:
            users[uid] = {"_id": u["_id"], "username": u.get("username")}
    for r in reviews:
        r["user"] = users.get(r["user_id"])
    return reviews


async def _attach_books(db, reviews):
    """Attach ``book: {_id, title, author, cover_image, average_rating}``."""
    ids = list({r["book_id"] for r in reviews})
    books = {}
    for bid in ids:
        b = await db.books.find_one({"_id": bid})
        if b:
            books[bid] = {
                k: b.get(k)
                for k in ["_id", "title", "author", "cover_image", "average_rating"]
            }
    for r in reviews:
        r["book"] = books.get(r["book_id"])
    return reviews


async def get_review(db, review_id):
    doc = await db.reviews.find_one({"_id": review_id})
    if not doc:
        raise NotFound("Review not found")
    return doc


async def create_review(db, context, book_id, rating, comment):
    """
    Create the caller's review of a book and refresh the book's rating.

    Uniqueness per (book, user) is left to the unique index on the reviews
    collection; the resulting DuplicateKeyError is reported as
    DuplicateReview, so two racing requests cannot both succeed.

    Args:
        db: Database handle
        context (RequestContext): Authenticated caller
        book_id (str): Book being reviewed
        rating (int): Star rating, 1-5 inclusive
        comment (str): Review text, at least 10 characters once trimmed

    Returns:
        dict: Stored review with ``user`` attached

    Raises:
        ValidationError: Missing book id or comment too short
        InvalidRating: Rating outside 1-5
        NotFound: Unknown book
        DuplicateReview: The caller already reviewed this book
    """
    if not book_id:
        raise ValidationError("Missing required fields")
    rating = validate_rating(rating)
    comment = validate_comment(comment)

    if not await db.books.find_one({"_id": book_id}):
        raise NotFound("Book not found")

    now = utcnow()
    doc = {
        "_id": new_id(),
        "book_id": book_id,
        "user_id": context.user_id,
        "rating": rating,
        "comment": comment,
        "created_at": now,
        "updated_at": now,
    }
    try:
        await db.reviews.insert_one(doc)
    except DuplicateKeyError:
        raise DuplicateReview()

    logger.info(f"User {context.user_id} reviewed book {book_id} ({rating} stars)")
    await recompute_book_rating(db, book_id)
    return (await _attach_users(db, [doc]))[0]


async def update_review(db, review, rating=None, comment=None):
    """
    Edit an existing review and refresh the book's rating.

    Ownership is checked by the caller before this runs.

    Args:
        db: Database handle
        review (dict): Review document as returned by get_review()
        rating (int, optional): New star rating
        comment (str, optional): New review text

    Raises:
        ValidationError: Neither rating nor comment given, or comment too short
        InvalidRating: Rating outside 1-5
    """
    if rating is None and comment is None:
        raise ValidationError("Nothing to update")

    update = {"updated_at": utcnow()}
    if rating is not None:
        update["rating"] = validate_rating(rating)
    if comment is not None:
        update["comment"] = validate_comment(comment)

    await db.reviews.update_one({"_id": review["_id"]}, {"$set": update})
    review = {**review, **update}

    logger.info(f"Updated review {review['_id']}")
    await recompute_book_rating(db, review["book_id"])
    return (await _attach_users(db, [review]))[0]


async def delete_review(db, review):
    """Delete a review and refresh the rating of the book it belonged to."""
    await db.reviews.delete_one({"_id": review["_id"]})
    logger.info(f"Deleted review {review['_id']}")
    await recompute_book_rating(db, review["book_id"])
    return review


async def list_book_reviews(db, book_id):
    """Reviews of a book, newest first, each with its author's username."""
    docs = (
        await db.reviews.find({"book_id": book_id})
        .sort([("created_at", DESCENDING)])
        .to_list(length=None)
    )
    return await _attach_users(db, docs)


async def list_user_reviews(db, user_id, page=1, limit=PROFILE_REVIEW_LIMIT):
    """
    Page through a user's reviews, newest first, with book details attached.

    Args:
        db: Database handle
        user_id (str): Author id
        page (int): 1-indexed page number
        limit (int): Reviews per page

    Returns:
        tuple: (reviews, pagination) where pagination holds ``current``,
            ``total`` (page count), ``has_next`` and ``has_prev``
    """
    skip = (page - 1) * limit
    docs = (
        await db.reviews.find({"user_id": user_id})
        .sort([("created_at", DESCENDING)])
        .skip(skip)
        .limit(limit)
        .to_list(length=limit)
    )
    total = await db.reviews.count_documents({"user_id": user_id})
    pagination = {
        "current": page,
        "total": math.ceil(total / limit),
        "has_next": skip + len(docs) < total,
        "has_prev": page > 1,
    }
    return await _attach_books(db, docs), pagination
