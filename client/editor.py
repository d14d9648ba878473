"""
Single-book create, edit and show flows.

BookEditor loads a book into a BookForm, submits either a full create payload
or only the fields that changed, and reports server-side validation failures
with inline field messages.
"""

from enum import Enum
from typing import Dict, Optional

import structlog

from client.errors import APIRequestError, ClientError
from client.forms import BookForm
from client.http_client import BookshelfClient
from client.models import Book
from client.notifications import Notifier
from client.routing import HOME_PATH, Router

logger = structlog.get_logger(__name__)

VALIDATION_ERROR = "VALIDATION_ERROR"


class EditorState(str, Enum):
    READY = "ready"
    LOADING = "loading"
    SAVING = "saving"
    ERROR = "error"


class BookEditor:
    """Form state for creating a new book or editing an existing one."""

    def __init__(self, client: BookshelfClient, notifier: Notifier, router: Optional[Router] = None):
        self.client = client
        self.notifier = notifier
        self.router = router

        self.original: Optional[Book] = None
        self.form = BookForm()
        self.field_errors: Dict[str, str] = {}
        self.state = EditorState.READY

    @property
    def is_new(self) -> bool:
        return self.original is None

    def new(self) -> BookForm:
        """Start a blank create form."""
        self.original = None
        self.form = BookForm()
        self.field_errors = {}
        self.state = EditorState.READY
        return self.form

    async def load(self, book_id: str) -> Optional[Book]:
        """Fetch a book for showing or editing."""
        self.state = EditorState.LOADING
        try:
            book = await self.client.get_book(book_id)
        except ClientError as e:
            self.state = EditorState.ERROR
            self.notifier.error(e.message)
            logger.info("Book load failed", book_id=book_id, code=e.code)
            return None

        self.original = book
        self.form = BookForm.from_book(book)
        self.field_errors = {}
        self.state = EditorState.READY
        return book

    async def submit(self) -> Optional[Book]:
        """
        Save the form. New books are created; existing ones receive only the
        changed fields.

        Returns:
            The saved book, or None when nothing was saved
        """
        if self.state != EditorState.READY:
            return None

        if self.original is not None:
            changes = self.form.changed_fields(self.original)
            if not changes:
                self.notifier.info("No changes to save.")
                return self.original

        self.state = EditorState.SAVING
        self.field_errors = {}
        try:
            if self.original is None:
                book = await self.client.create_book(self.form.to_payload())
                message = "Book created successfully."
            else:
                book = await self.client.update_book(self.original.id, changes)
                message = "Book updated successfully."
        except APIRequestError as e:
            if e.code == VALIDATION_ERROR:
                self.field_errors = e.field_errors()
            self.state = EditorState.READY
            self.notifier.error(e.message, field_errors=self.field_errors)
            return None
        except ClientError as e:
            self.state = EditorState.READY
            self.notifier.error(e.message)
            return None

        self.original = book
        self.form = BookForm.from_book(book)
        self.state = EditorState.READY
        self.notifier.success(message)
        if self.router is not None:
            self.router.navigate(HOME_PATH)
        return book
