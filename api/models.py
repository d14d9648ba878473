"""
API models and schemas for the FastAPI application.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator
from pydantic.alias_generators import to_camel


OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"
MAX_PRICE = Decimal("99999.99")
PRICE_QUANTUM = Decimal("0.01")

ISBN_PATTERN = re.compile(r"^(?:\d{9}[\dXx]|\d{13})$")

COVER_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".svg", ".avif")
COVER_IMAGE_HOSTS = (
    "images.unsplash.com",
    "i.imgur.com",
    "covers.openlibrary.org",
    "books.google.com",
    "books.googleusercontent.com",
    "m.media-amazon.com",
    "images-na.ssl-images-amazon.com",
    "res.cloudinary.com",
    "cdn.pixabay.com",
    "images.pexels.com",
)


class CamelModel(BaseModel):
    """Base model whose JSON keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookCondition(str, Enum):
    """Physical condition of a book."""
    NEW = "Novo"
    LIKE_NEW = "Seminovo"
    USED = "Usado"


class BookStatus(str, Enum):
    """Availability of a book within the owner's catalog."""
    AVAILABLE = "disponivel"
    RENTED = "alugado"
    UNAVAILABLE = "indisponivel"
    SOLD = "vendido"


class SortBy(str, Enum):
    """Sort options for the collection listing."""
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    TITLE = "title"
    AUTHOR = "author"
    PRICE = "price"
    PUBLISHED_DATE = "publishedDate"
    PAGES = "pages"


class SortOrder(str, Enum):
    """Sort order options."""
    ASC = "asc"
    DESC = "desc"


def is_object_id(value: str) -> bool:
    """Check identifier syntax before any lookup."""
    return bool(value) and re.match(OBJECT_ID_PATTERN, value) is not None


def normalize_price(value) -> Decimal:
    """Convert a JSON number into a Decimal without binary float noise."""
    if isinstance(value, bool):
        raise ValueError("Price must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValueError("Price must be a number")
    if not price.is_finite():
        raise ValueError("Price must be a finite number")
    return price


def is_valid_isbn(value: str) -> bool:
    """ISBN-10 or ISBN-13 shape, ignoring hyphens and spaces."""
    return ISBN_PATTERN.match(re.sub(r"[\s-]", "", value)) is not None


def is_cover_image_url(url: HttpUrl) -> bool:
    """An image file by extension, or anything served by a known image CDN."""
    path = (url.path or "").lower()
    if path.endswith(COVER_IMAGE_EXTENSIONS):
        return True
    host = (url.host or "").lower()
    return any(host == cdn or host.endswith("." + cdn) for cdn in COVER_IMAGE_HOSTS)


class BookFieldsBase(CamelModel):
    """Validators shared by the create and update payloads."""

    @field_validator("title", "author", "isbn", "genre", "publisher", "language",
                     mode="before", check_fields=False)
    @classmethod
    def strip_strings(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("isbn", "cover_url", "published_date", mode="before", check_fields=False)
    @classmethod
    def blank_as_missing(cls, v):
        if isinstance(v, str) and v.strip() == "":
            return None
        return v

    @field_validator("price", mode="before", check_fields=False)
    @classmethod
    def parse_price(cls, v):
        if v is None:
            return v
        return normalize_price(v)

    @field_validator("price", check_fields=False)
    @classmethod
    def quantize_price(cls, v):
        if v is None:
            return v
        if v.as_tuple().exponent < -2:
            raise ValueError("Price must have at most 2 decimal places")
        return v.quantize(PRICE_QUANTUM)

    @field_validator("isbn", check_fields=False)
    @classmethod
    def validate_isbn(cls, v):
        if v is not None and not is_valid_isbn(v):
            raise ValueError("ISBN must be a valid ISBN-10 or ISBN-13")
        return v

    @field_validator("published_date", check_fields=False)
    @classmethod
    def validate_published_date(cls, v):
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v > datetime.now(timezone.utc):
            raise ValueError("Published date cannot be in the future")
        return v

    @field_validator("cover_url", check_fields=False)
    @classmethod
    def validate_cover_url(cls, v):
        if v is not None and not is_cover_image_url(v):
            raise ValueError("Cover URL must point to an image file or a known image host")
        return v


class BookCreate(BookFieldsBase):
    """Payload for creating a book."""
    title: str = Field(..., min_length=1, max_length=200, description="Book title")
    author: str = Field(..., min_length=1, max_length=100, description="Book author")
    description: Optional[str] = Field(None, max_length=2000, description="Book description")
    price: Decimal = Field(..., gt=0, le=MAX_PRICE, description="Book price")
    isbn: Optional[str] = Field(None, max_length=50, description="ISBN-10 or ISBN-13")
    genre: Optional[str] = Field(None, max_length=50)
    publisher: Optional[str] = Field(None, max_length=100)
    published_date: Optional[datetime] = Field(None, description="Publication date")
    pages: Optional[int] = Field(None, gt=0, le=10000)
    language: Optional[str] = Field(None, max_length=30)
    condition: BookCondition = Field(BookCondition.NEW)
    status: BookStatus = Field(BookStatus.AVAILABLE)
    cover_url: Optional[HttpUrl] = Field(None, description="Cover image URL")


class BookUpdate(BookFieldsBase):
    """Partial update payload; only provided fields are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[Decimal] = Field(None, gt=0, le=MAX_PRICE)
    isbn: Optional[str] = Field(None, max_length=50)
    genre: Optional[str] = Field(None, max_length=50)
    publisher: Optional[str] = Field(None, max_length=100)
    published_date: Optional[datetime] = None
    pages: Optional[int] = Field(None, gt=0, le=10000)
    language: Optional[str] = Field(None, max_length=30)
    condition: Optional[BookCondition] = None
    status: Optional[BookStatus] = None
    cover_url: Optional[HttpUrl] = None

    @field_validator("title", "author", "price", "condition", "status")
    @classmethod
    def reject_null(cls, v, info):
        # Only runs for explicitly provided values
        if v is None:
            raise ValueError(f"{to_camel(info.field_name)} cannot be null")
        return v


class BookResponse(CamelModel):
    """Book as returned by the API."""
    id: str = Field(..., description="Unique book identifier")
    title: str
    author: str
    description: Optional[str] = None
    price: float = Field(..., description="Price as a plain number")
    isbn: Optional[str] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[datetime] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    condition: BookCondition = BookCondition.NEW
    status: BookStatus = BookStatus.AVAILABLE
    cover_url: Optional[str] = None
    owner_id: str = Field(..., description="Identifier of the owning user")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SearchQueryParams(BaseModel):
    """Query parameters for book search."""
    query: str = Field(..., min_length=1, description="Search term")
    page: int = Field(1, ge=1, description="Page number")
    limit: int = Field(10, ge=1, le=100, description="Items per page")

    @field_validator("query", mode="before")
    @classmethod
    def strip_query(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class CollectionQueryParams(BaseModel):
    """Query parameters for the caller's collection listing."""
    page: int = Field(1, ge=1, description="Page number")
    limit: int = Field(10, ge=1, le=100, description="Items per page")
    sort_by: SortBy = Field(SortBy.CREATED_AT, description="Sort field")
    sort_order: SortOrder = Field(SortOrder.DESC, description="Sort order")


class Pagination(CamelModel):
    """Pagination metadata shared by search and collection listings."""
    current_page: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool
    limit: int


class SearchPagination(Pagination):
    total_count: int


class CollectionPagination(Pagination):
    total_books: int
    next_page: Optional[int] = None
    prev_page: Optional[int] = None


class BookEnvelope(CamelModel):
    message: str
    code: Optional[str] = None
    book: BookResponse


class BookSearchResponse(CamelModel):
    message: str
    books: List[BookResponse]
    pagination: SearchPagination
    search_query: str


class CollectionResponse(CamelModel):
    message: str
    books: List[BookResponse]
    pagination: CollectionPagination


class UserCreate(CamelModel):
    """Registration payload."""
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6, max_length=100)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class LoginRequest(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class PasswordResetRequest(CamelModel):
    id: str = Field(..., pattern=OBJECT_ID_PATTERN, description="User identifier")
    new_password: str = Field(..., min_length=6, max_length=100)


class UserResponse(CamelModel):
    """User as returned by the API; never carries the password hash."""
    id: str
    username: str
    is_active: bool = True
    owned_book_ids: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class UserEnvelope(CamelModel):
    message: str
    code: Optional[str] = None
    user: UserResponse


class LoginResponse(CamelModel):
    message: str
    code: str = "LOGIN_SUCCESS"
    token: str
    user: UserResponse


class MessageResponse(CamelModel):
    message: str
    code: str


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Error response model."""
    message: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    errors: Optional[List[FieldError]] = Field(None, description="Field-level validation errors")
    detail: Optional[str] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
