# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

import re
from datetime import datetime, timezone
import pytest
from typing import List, Dict, Any
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError

from api.main import app
from api.auth import make_token
from api.rate_limit import limiter
from store.db import ensure_indexes
from store.utils import hash_password, new_id

TEST_PASSWORD = "secret123"


def _match_value(docv, cond):
    """
    Evaluate one field condition against a document value.

    Supports equality, MongoDB's array-element equality (a scalar condition
    matches an array containing it), ``$regex``/``$options`` and
    ``$gte``/``$lte``. Any other operator raises NotImplementedError naming
    the operator, so a new store query shows up as a failing test here.
    """
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$options":
                continue
            if op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                values = docv if isinstance(docv, list) else [docv]
                if not any(
                    isinstance(v, str) and re.search(arg, v, flags) for v in values
                ):
                    return False
            elif op == "$gte":
                if docv is None or docv < arg:
                    return False
            elif op == "$lte":
                if docv is None or docv > arg:
                    return False
            else:
                raise NotImplementedError(
                    f"FakeCollection does not support {op}; "
                    "supported: $regex, $options, $gte, $lte"
                )
        return True
    if isinstance(docv, list) and not isinstance(cond, list):
        return cond in docv
    return docv == cond


def matches(doc, q):
    """Return True when the document satisfies every condition in ``q``."""
    for k, v in (q or {}).items():
        if k == "$or":
            if not any(matches(doc, sub) for sub in v):
                return False
        elif not _match_value(doc.get(k), v):
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._skip = 0
        self._limit = None

    def sort(self, order):
        """
        Sort the documents in the cursor by a specified field and direction.

        Args:
            order (list[tuple]): A list of (field, direction) tuples. Only
                the first tuple is used.

        Returns:
            FakeCursor: The same cursor instance to allow method chaining.

        Behavior:
            - Missing fields sort before present ones in ascending order.
            - Python's sort is stable, so ties keep insertion order.
        """
        field, direction = order[0]
        self._docs.sort(
            key=lambda d: (d.get(field) is not None, d.get(field)),
            reverse=(direction < 0),
        )
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        """
        Return copies of the documents in the skip/limit window.

        Args:
            length (int, optional): Unused; kept for Motor API compatibility.
        """
        start = self._skip
        end = None if self._limit is None else start + self._limit
        return [dict(d) for d in self._docs[start:end]]


class FakeResult:
    def __init__(self, **counts):
        self.matched_count = counts.get("matched_count", 0)
        self.modified_count = counts.get("modified_count", 0)
        self.deleted_count = counts.get("deleted_count", 0)
        self.inserted_id = counts.get("inserted_id")


class FakeCollection:
    """
    In-memory stand-in for a Motor collection.

    Implements the subset of the driver the store uses. Unique indexes
    created via create_index() are enforced on insert and raise
    DuplicateKeyError like the server does.
    """

    def __init__(self, docs=None):
        self.docs = [dict(d) for d in (docs or [])]
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = new_id()
        self.unique_keys = [("_id",)]
        self.indexes = []

    async def create_index(self, keys, unique=False, name=None):
        fields = tuple(k for k, _ in keys) if isinstance(keys, list) else (keys,)
        self.indexes.append({"fields": fields, "unique": unique, "name": name})
        if unique:
            self.unique_keys.append(fields)
        return name or "_".join(fields)

    def _check_unique(self, doc):
        for fields in self.unique_keys:
            key = tuple(doc.get(f) for f in fields)
            if any(tuple(d.get(f) for f in fields) == key for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error {fields}", 11000)

    async def find_one(self, q=None, projection=None):
        for d in self.docs:
            if matches(d, q):
                return dict(d)
        return None

    def find(self, q=None, projection=None):
        return FakeCursor([d for d in self.docs if matches(d, q)])

    async def insert_one(self, doc):
        doc = dict(doc)
        if "_id" not in doc:
            doc["_id"] = new_id()
        self._check_unique(doc)
        self.docs.append(doc)
        return FakeResult(inserted_id=doc["_id"])

    async def insert_many(self, docs):
        for doc in docs:
            await self.insert_one(doc)

    async def update_one(self, q, u):
        """
        Apply a ``$set`` update to the first matching document.

        Returns:
            FakeResult: matched_count/modified_count of 1 or 0
        """
        for d in self.docs:
            if matches(d, q):
                d.update(u.get("$set", {}))
                return FakeResult(matched_count=1, modified_count=1)
        return FakeResult()

    async def delete_one(self, q):
        for i, d in enumerate(self.docs):
            if matches(d, q):
                del self.docs[i]
                return FakeResult(deleted_count=1)
        return FakeResult()

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if matches(d, q))

    async def distinct(self, field, q=None):
        """Distinct values of a field, unwinding arrays as MongoDB does."""
        seen = []
        for d in self.docs:
            if not matches(d, q):
                continue
            v = d.get(field)
            for item in v if isinstance(v, list) else [v]:
                if item not in seen:
                    seen.append(item)
        return seen


class FakeDB:
    def __init__(self, books=None, reviews=None, users=None):
        self.books = FakeCollection(books)
        self.reviews = FakeCollection(reviews)
        self.users = FakeCollection(users)


def _at(month):
    return datetime(2024, month, 1, tzinfo=timezone.utc)


@pytest.fixture
def sample_books():
    """
    Sample catalog for testing.

    Returns:
        list[dict]: Four books created a month apart:
            - book1 "The Silent Patient": Mystery/Thriller, featured, Jan
            - book2 "Gone Girl": Mystery, not featured, Feb
            - book3 "Dune": Science Fiction, featured, Mar, one 5-star review
            - book4 "The Hound of the Baskervilles": Mystery/Classic,
              featured, Apr
    """

    def book(_id, title, author, genre, featured, month, description, rating=0, reviews=0):
        return {
            "_id": _id,
            "title": title,
            "author": author,
            "description": description,
            "genre": genre,
            "language": "English",
            "featured": featured,
            "average_rating": rating,
            "total_reviews": reviews,
            "created_at": _at(month),
            "updated_at": _at(month),
        }

    return [
        book("book1", "The Silent Patient", "Alex Michaelides", ["Mystery", "Thriller"], True, 1,
             "A woman shoots her husband and never speaks again."),
        book("book2", "Gone Girl", "Gillian Flynn", ["Mystery"], False, 2,
             "A marriage gone terribly wrong."),
        book("book3", "Dune", "Frank Herbert", ["Science Fiction"], True, 3,
             "Politics and spice on the desert planet Arrakis.", rating=5, reviews=1),
        book("book4", "The Hound of the Baskervilles", "Arthur Conan Doyle", ["Mystery", "Classic"], True, 4,
             "A Sherlock Holmes mystery on the moors."),
    ]


@pytest.fixture
def sample_users():
    """Two regular users (alice, bob) and one admin, all with TEST_PASSWORD."""
    pw = hash_password(TEST_PASSWORD, iterations=1000)

    def user(_id, username, is_admin=False):
        return {
            "_id": _id,
            "username": username,
            "email": f"{username}@example.com",
            "password": pw,
            "name": None,
            "bio": None,
            "is_admin": is_admin,
            "created_at": _at(1),
            "updated_at": _at(1),
        }

    return [user("alice", "alice"), user("bob", "bob"), user("admin", "admin", True)]


@pytest.fixture
def sample_reviews():
    return [
        {
            "_id": "rev1",
            "book_id": "book3",
            "user_id": "bob",
            "rating": 5,
            "comment": "A masterpiece of world building.",
            "created_at": _at(5),
            "updated_at": _at(5),
        }
    ]


@pytest.fixture
async def fake_db(sample_books, sample_users, sample_reviews):
    """
    Fake database with the sample data and the application's indexes.

    ensure_indexes() runs against the fake so the unique constraints on
    reviews and users are enforced exactly as configured for MongoDB.
    """
    db = FakeDB(books=sample_books, reviews=sample_reviews, users=sample_users)
    await ensure_indexes(db)
    return db


@pytest.fixture
def tokens():
    return {
        "alice": make_token("alice", False),
        "bob": make_token("bob", False),
        "admin": make_token("admin", True),
    }


@pytest.fixture
def auth(tokens):
    """Build an Authorization header for one of the sample users."""

    def _auth(username):
        return {"Authorization": f"Bearer {tokens[username]}"}

    return _auth


@pytest.fixture
async def client(monkeypatch, fake_db):
    """
    Async test client with the database patched to the fake.

    Setup:
        - Patches get_db in api.main to return fake_db
        - Resets the rate limiter so every test starts with a clean budget
        - Creates AsyncClient with ASGITransport (lifespan is not run, so
          no real MongoDB connection is attempted)
    """
    monkeypatch.setattr("api.main.get_db", lambda: fake_db)
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
