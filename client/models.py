"""
Client-side models for API payloads.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookCondition(str, Enum):
    NEW = "Novo"
    LIKE_NEW = "Seminovo"
    USED = "Usado"


class BookStatus(str, Enum):
    AVAILABLE = "disponivel"
    RENTED = "alugado"
    UNAVAILABLE = "indisponivel"
    SOLD = "vendido"


class Book(CamelModel):
    """A book as returned by the API."""
    id: str
    title: str
    author: str
    description: Optional[str] = None
    price: float
    isbn: Optional[str] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[datetime] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    condition: BookCondition = BookCondition.NEW
    status: BookStatus = BookStatus.AVAILABLE
    cover_url: Optional[str] = None
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PageInfo(CamelModel):
    """Pagination metadata; search reports totalCount, the collection totalBooks."""
    current_page: int
    total_pages: int
    total: int = Field(validation_alias=AliasChoices("totalCount", "totalBooks", "total"))
    has_next_page: bool
    has_prev_page: bool
    limit: int


class BookPage(CamelModel):
    books: List[Book]
    pagination: PageInfo


class UserInfo(CamelModel):
    id: str
    username: str
    is_active: bool = True


class LoginResult(CamelModel):
    token: str
    user: UserInfo
