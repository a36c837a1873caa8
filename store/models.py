# store/models.py
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Payload model accepting both camelCase (client) and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestContext(BaseModel):
    """Identity of the caller, decoded once per request from its credential."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    is_admin: bool = False
    issued_at: datetime


class BookCreate(CamelModel):
    title: str
    author: str
    description: Optional[str] = None
    isbn: Optional[str] = None
    cover_image: Optional[str] = None
    publication_date: Optional[datetime] = None
    genre: List[str] = Field(default_factory=list)
    pages: Optional[int] = Field(None, ge=1)
    language: str = "English"
    featured: bool = False

    @field_validator("title", "author")
    @classmethod
    def not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("genre", mode="before")
    @classmethod
    def split_genre(cls, v):
        # the add-book form posts genres as a comma separated string
        if isinstance(v, str):
            return [g.strip() for g in v.split(",") if g.strip()]
        return v


class ReviewCreate(CamelModel):
    book_id: str
    # unchecked here; lax int coercion would turn true into 1
    rating: Any
    comment: str


class ReviewUpdate(CamelModel):
    rating: Optional[Any] = None
    comment: Optional[str] = None


class RegisterPayload(CamelModel):
    username: str
    email: str
    password: str
    name: Optional[str] = None
    admin_code: Optional[str] = None


class LoginPayload(CamelModel):
    email: str
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = None
    bio: Optional[str] = None


class AdminGrant(CamelModel):
    is_admin: bool = True


class UserStats(CamelModel):
    total_reviews: int = 0
    unique_books_reviewed: int = 0
    average_rating: float = 0
