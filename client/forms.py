"""
Book form helpers.

The edit form is populated once from a stored book and later diffed against
it, so the update request only carries the fields the user changed.
"""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from client.models import Book, BookCondition, BookStatus


class Language(str, Enum):
    """Languages offered in the language selector."""
    PORTUGUESE = "Português"
    ENGLISH = "Inglês"
    SPANISH = "Espanhol"
    FRENCH = "Francês"
    GERMAN = "Alemão"
    ITALIAN = "Italiano"
    JAPANESE = "Japonês"
    CHINESE = "Chinês"
    RUSSIAN = "Russo"
    ARABIC = "Árabe"


class KnownLanguage(BaseModel):
    kind: Literal["known"] = "known"
    language: Language

    @property
    def value(self) -> str:
        return self.language.value


class CustomLanguage(BaseModel):
    kind: Literal["custom"] = "custom"
    name: str = Field(..., min_length=1, max_length=30)

    @property
    def value(self) -> str:
        return self.name


LanguageChoice = Annotated[Union[KnownLanguage, CustomLanguage], Field(discriminator="kind")]


def resolve_language(value: Optional[str]) -> Optional[Union[KnownLanguage, CustomLanguage]]:
    """Pick the selector entry for a stored language, or a free-text one."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return KnownLanguage(language=Language(value))
    except ValueError:
        return CustomLanguage(name=value)


class BookForm(BaseModel):
    """Editable fields of a book."""
    title: str = ""
    author: str = ""
    description: Optional[str] = None
    price: Optional[float] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    pages: Optional[int] = None
    language: Optional[LanguageChoice] = None
    condition: BookCondition = BookCondition.NEW
    status: BookStatus = BookStatus.AVAILABLE
    cover_url: Optional[str] = None

    @classmethod
    def from_book(cls, book: Book) -> "BookForm":
        return cls(
            title=book.title,
            author=book.author,
            description=book.description,
            price=book.price,
            isbn=book.isbn,
            genre=book.genre,
            publisher=book.publisher,
            published_date=book.published_date.date() if book.published_date else None,
            pages=book.pages,
            language=resolve_language(book.language),
            condition=book.condition,
            status=book.status,
            cover_url=book.cover_url,
        )

    def _wire_values(self) -> Dict[str, Any]:
        published = None
        if self.published_date is not None:
            published = datetime.combine(self.published_date, time(), timezone.utc).isoformat()

        return {
            "title": self.title.strip(),
            "author": self.author.strip(),
            "description": _blank_to_none(self.description),
            "price": self.price,
            "isbn": _blank_to_none(self.isbn),
            "genre": _blank_to_none(self.genre),
            "publisher": _blank_to_none(self.publisher),
            "publishedDate": published,
            "pages": self.pages,
            "language": self.language.value if self.language is not None else None,
            "condition": self.condition.value,
            "status": self.status.value,
            "coverUrl": _blank_to_none(self.cover_url),
        }

    def to_payload(self) -> Dict[str, Any]:
        """Create payload; unset optional fields are left out."""
        return {key: value for key, value in self._wire_values().items() if value is not None}

    def changed_fields(self, original: Book) -> Dict[str, Any]:
        """
        Update payload holding only the fields that differ from `original`.
        A cleared optional field is sent as null so the server clears it.
        """
        before = BookForm.from_book(original)._wire_values()
        return {
            key: value for key, value in self._wire_values().items()
            if value != before[key]
        }


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
