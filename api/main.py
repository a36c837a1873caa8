# api/main.py
from contextlib import asynccontextmanager
from typing import Optional
import logging
import os
from fastapi import FastAPI, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv
from .auth import (
    get_admin_context,
    get_request_context,
    make_token,
    require_owner,
)
from .rate_limit import AUTH_RATE_LIMIT, limiter, register_rate_limit
from store import catalog, reviews, stats, users
from store.db import close_client, ensure_indexes, get_db
from store.errors import BookReviewError, StorageError
from store.models import (
    AdminGrant,
    BookCreate,
    LoginPayload,
    ProfileUpdate,
    RegisterPayload,
    RequestContext,
    ReviewCreate,
    ReviewUpdate,
)

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_indexes(get_db())
    yield
    close_client()


app = FastAPI(title="Book Review API", version="1.0", lifespan=lifespan)

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


# Error handling


@app.exception_handler(BookReviewError)
async def book_review_error_handler(request: Request, exc: BookReviewError):
    if isinstance(exc, StorageError):
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """
    Report malformed request input as a 400 with a ``message`` body.

    Missing body fields produce "Missing required fields"; any other schema
    violation (wrong type, out-of-range query parameter) produces
    "Invalid request".
    """
    missing = any(e.get("type") == "missing" for e in exc.errors())
    message = "Missing required fields" if missing else "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(PyMongoError)
async def storage_error_handler(request: Request, exc: PyMongoError):
    logger.exception(f"MongoDB failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": StorageError.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": StorageError.message})


# Response shaping


BOOK_FIELDS = {
    "_id": "_id",
    "title": "title",
    "author": "author",
    "description": "description",
    "isbn": "isbn",
    "cover_image": "coverImage",
    "publication_date": "publicationDate",
    "genre": "genre",
    "pages": "pages",
    "language": "language",
    "featured": "featured",
    "average_rating": "averageRating",
    "total_reviews": "totalReviews",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

USER_FIELDS = {
    "_id": "_id",
    "username": "username",
    "email": "email",
    "name": "name",
    "bio": "bio",
    "is_admin": "isAdmin",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def book_doc_to_resp(doc):
    """
    Transform a MongoDB book document into an API response dictionary.

    Args:
        doc (dict): Book document, possibly partial (embedded summaries
            carry only some fields)

    Returns:
        dict: camelCase keys for the fields present in the document

    Note:
        Storage uses snake_case; the client contract is camelCase.
    """
    return {api: doc[key] for key, api in BOOK_FIELDS.items() if key in doc}


def user_doc_to_resp(doc):
    return {api: doc.get(key) for key, api in USER_FIELDS.items()}


def review_doc_to_resp(doc):
    """
    Transform a review document, with any attached user or book summary.

    Returns:
        dict: ``_id``, ``bookId``, ``userId``, ``rating``, ``comment``,
            ``createdAt``, ``updatedAt`` plus ``user`` ({_id, username})
            and/or ``book`` (summary) when attached by the store
    """
    resp = {
        "_id": doc["_id"],
        "bookId": doc["book_id"],
        "userId": doc["user_id"],
        "rating": doc["rating"],
        "comment": doc["comment"],
        "createdAt": doc.get("created_at"),
        "updatedAt": doc.get("updated_at"),
    }
    if "user" in doc:
        resp["user"] = doc["user"]
    if "book" in doc:
        resp["book"] = book_doc_to_resp(doc["book"]) if doc["book"] else None
    return resp


def auth_resp(user):
    return {
        "token": make_token(user["_id"], user["is_admin"]),
        "user": user_doc_to_resp(user),
    }


@app.get("/")
def health_check():
    return {"name": "Book Review API", "status": "ok"}


# Books


@app.get("/books")
async def list_books(
    response: Response,
    search: Optional[str] = Query(None),
    genre: Optional[str] = Query(None),
    author: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """
    List catalog books, newest first, with optional filters.

    Args:
        search (str, optional): Case-insensitive substring over title,
            author and description
        genre (str, optional): Exact match against any of the book's genres
        author (str, optional): Case-insensitive substring over author
        featured (bool, optional): Exact match on the featured flag
        page (int, optional): 1-indexed page. When omitted the full matching
            set is returned.
        page_size (int): Books per page when paginating, 1-100. Defaults to 20

    Returns:
        list[dict]: Matching books in API form

    Headers:
        X-Total-Count: Total matching books, set only when paginating

    Query Building:
        - Filters are combined with AND logic
        - Empty filters are omitted from query
    """
    filters = {"search": search, "genre": genre, "author": author, "featured": featured}
    docs, total = await catalog.list_books(get_db(), filters, page=page, page_size=page_size)
    if page is not None:
        response.headers["X-Total-Count"] = str(total)
    return [book_doc_to_resp(d) for d in docs]


@app.get("/books/search")
async def search_books(q: Optional[str] = Query(None)):
    docs = await catalog.search_books(get_db(), q)
    return [book_doc_to_resp(d) for d in docs]


@app.get("/books/genres")
async def list_genres():
    return await catalog.list_genres(get_db())


@app.get("/books/{book_id}")
async def get_book(book_id: str):
    """
    Retrieve a single book by its unique identifier.

    Raises:
        NotFound: 404 if no book exists with the given book_id
    """
    return book_doc_to_resp(await catalog.get_book(get_db(), book_id))


@app.post("/books", status_code=201)
async def create_book(
    payload: BookCreate, context: RequestContext = Depends(get_admin_context)
):
    """
    Add a book to the catalog.

    Security:
        Requires a bearer credential issued to an admin. 401 without a valid
        credential, 403 for non-admins.

    Returns:
        dict: The created book, with averageRating and totalReviews at 0
    """
    doc = await catalog.create_book(get_db(), payload)
    logger.info(f"Admin {context.user_id} added book {doc['_id']}")
    return book_doc_to_resp(doc)


# Reviews


@app.get("/reviews/book/{book_id}")
async def list_book_reviews(book_id: str):
    docs = await reviews.list_book_reviews(get_db(), book_id)
    return [review_doc_to_resp(d) for d in docs]


@app.post("/reviews", status_code=201)
async def create_review(
    payload: ReviewCreate, context: RequestContext = Depends(get_request_context)
):
    """
    Review a book as the authenticated user.

    Args:
        payload (ReviewCreate): ``bookId``, ``rating`` (1-5) and ``comment``
            (at least 10 characters)

    Returns:
        dict: The created review with its author's username attached

    Errors:
        - 400: missing fields, invalid rating, short comment, or a second
          review of the same book by the same user
        - 401: missing or invalid credential
        - 404: unknown book

    Side Effects:
        Recomputes the book's averageRating and totalReviews.
    """
    doc = await reviews.create_review(
        get_db(), context, payload.book_id, payload.rating, payload.comment
    )
    return review_doc_to_resp(doc)


@app.put("/reviews/{review_id}")
async def update_review(
    review_id: str,
    payload: ReviewUpdate,
    context: RequestContext = Depends(get_request_context),
):
    db = get_db()
    review = await reviews.get_review(db, review_id)
    require_owner(context, review["user_id"])
    doc = await reviews.update_review(
        db, review, rating=payload.rating, comment=payload.comment
    )
    return review_doc_to_resp(doc)


@app.delete("/reviews/{review_id}")
async def delete_review(
    review_id: str, context: RequestContext = Depends(get_request_context)
):
    """
    Delete one of the caller's reviews.

    Errors:
        - 401: missing or invalid credential
        - 403: the review belongs to another user
        - 404: unknown review

    Side Effects:
        Recomputes the rating of the book the review belonged to.
    """
    db = get_db()
    review = await reviews.get_review(db, review_id)
    require_owner(context, review["user_id"])
    await reviews.delete_review(db, review)
    return {"message": "Review deleted successfully"}


# Users


@app.post("/users/register", status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(request: Request, payload: RegisterPayload):
    """
    Create an account and return a credential for it.

    Rate Limit:
        AUTH_RATE_LIMIT per client address

    Returns:
        dict: ``token`` and public ``user`` fields
    """
    user = await users.register_user(get_db(), payload)
    return auth_resp(user)


@app.post("/users/login")
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, payload: LoginPayload):
    user = await users.authenticate_user(get_db(), payload.email, payload.password)
    return {"message": "Login successful", **auth_resp(user)}


@app.get("/users/me")
async def get_me(context: RequestContext = Depends(get_request_context)):
    db = get_db()
    user = await users.get_user(db, context.user_id)
    user_stats = await stats.compute_user_stats(db, context.user_id)
    return {**user_doc_to_resp(user), "stats": user_stats.model_dump(by_alias=True)}


@app.put("/users/me")
async def update_me(
    payload: ProfileUpdate, context: RequestContext = Depends(get_request_context)
):
    user = await users.update_profile(
        get_db(), context.user_id, name=payload.name, bio=payload.bio
    )
    return user_doc_to_resp(user)


@app.get("/users/profile/{user_id}")
async def get_profile(user_id: str):
    """
    Public profile page data for a user.

    Returns:
        dict: Response containing:
            - user (dict): Public user fields
            - reviews (list[dict]): The 10 most recent reviews, each with a
              book summary (title, author, coverImage, averageRating)
            - stats (dict): totalReviews, uniqueBooksReviewed, averageRating

    Raises:
        NotFound: 404 for an unknown user
    """
    db = get_db()
    user = await users.get_user(db, user_id)
    recent, _ = await reviews.list_user_reviews(db, user_id)
    user_stats = await stats.compute_user_stats(db, user_id)
    return {
        "user": user_doc_to_resp(user),
        "reviews": [review_doc_to_resp(r) for r in recent],
        "stats": user_stats.model_dump(by_alias=True),
    }


@app.get("/users/{user_id}")
async def get_user(user_id: str):
    return user_doc_to_resp(await users.get_user(get_db(), user_id))


@app.get("/users/{user_id}/reviews")
async def get_user_reviews(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    docs, pagination = await reviews.list_user_reviews(
        get_db(), user_id, page=page, limit=limit
    )
    return {
        "reviews": [review_doc_to_resp(d) for d in docs],
        "pagination": {
            "current": pagination["current"],
            "total": pagination["total"],
            "hasNext": pagination["has_next"],
            "hasPrev": pagination["has_prev"],
        },
    }


@app.put("/users/{user_id}/admin")
async def set_admin(
    user_id: str,
    payload: AdminGrant,
    context: RequestContext = Depends(get_admin_context),
):
    """
    Grant or revoke the admin role of another account.

    Security:
        Admin only. The target's existing credentials keep their old flag
        until the target logs in again.
    """
    user = await users.set_admin(get_db(), user_id, payload.is_admin)
    logger.info(f"Admin {context.user_id} set admin={payload.is_admin} on {user_id}")
    return user_doc_to_resp(user)


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
