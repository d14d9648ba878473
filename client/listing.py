"""
Book listing view state.

BookListView owns everything a table or card listing needs between renders:
the loaded page, the active search, the bulk selection and the delete flows.
"""

import asyncio
from enum import Enum
from typing import Dict, List, Optional, Set

import structlog
from pydantic import BaseModel, Field

from client.config import config as client_config
from client.confirmation import DeleteConfirmation
from client.errors import ClientError
from client.http_client import BookshelfClient
from client.models import Book, PageInfo
from client.notifications import Notifier
from client.storage import SEARCH_KEY, VIEW_MODE_KEY, PersistentStore, SessionStore

logger = structlog.get_logger(__name__)

SORTABLE_COLUMNS = ("title", "author", "price", "published_date", "pages", "created_at")


class ViewMode(str, Enum):
    TABLE = "table"
    CARD = "card"


class ViewState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class BulkDeleteOutcome(BaseModel):
    """Aggregate result of a bulk delete."""
    succeeded: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


class BookListView:
    """State of one listing view over the caller's books."""

    def __init__(
        self,
        client: BookshelfClient,
        notifier: Notifier,
        store: PersistentStore,
        session: SessionStore,
        mode: Optional[ViewMode] = None,
        page_size: Optional[int] = None,
        confirm_window: Optional[float] = None
    ):
        self.client = client
        self.notifier = notifier
        self.store = store
        self.session = session
        self.page_size = page_size or client_config.page_size

        self.state = ViewState.IDLE
        self.books: List[Book] = []
        self.pagination: Optional[PageInfo] = None
        self.error: Optional[str] = None
        self.page = 1

        self.staged_search = ""
        self.active_search: Optional[str] = session.get(SEARCH_KEY) or None

        self.selection: Set[str] = set()
        self.bulk_confirm_open = False

        self.sort_column: Optional[str] = None
        self.sort_ascending = True

        self.confirmation = DeleteConfirmation(
            self._delete_confirmed,
            window=confirm_window if confirm_window is not None else client_config.delete_confirm_seconds
        )

        if mode is not None:
            self.set_view_mode(mode)
        else:
            stored = store.get(VIEW_MODE_KEY)
            self.view_mode = ViewMode(stored) if stored in ViewMode._value2member_map_ else ViewMode.TABLE

    def set_view_mode(self, mode: ViewMode) -> None:
        self.view_mode = mode
        self.store.set(VIEW_MODE_KEY, mode.value)

    # Loading

    async def load(self) -> None:
        """Fetch the current page, from search when a search is active."""
        self.state = ViewState.LOADING
        self.error = None
        try:
            if self.active_search:
                result = await self.client.search_books(self.active_search, self.page, self.page_size)
            else:
                result = await self.client.get_collection(self.page, self.page_size)
        except ClientError as e:
            self.state = ViewState.ERROR
            self.error = e.message
            self.notifier.error(e.message)
            logger.info("Listing failed", code=e.code, page=self.page)
            return

        self.books = result.books
        self.pagination = result.pagination
        self.sort_column = None
        self.state = ViewState.LOADED

    async def refresh(self) -> None:
        await self.load()

    async def retry(self) -> None:
        if self.state == ViewState.ERROR:
            await self.load()

    # Search

    def stage_search(self, text: str) -> None:
        """Record typed text without fetching."""
        self.staged_search = text

    async def submit_search(self) -> None:
        term = self.staged_search.strip()
        if not term:
            await self.clear_search()
            return
        self.active_search = term
        self.session.set(SEARCH_KEY, term)
        self.page = 1
        self.selection.clear()
        await self.load()

    async def clear_search(self) -> None:
        self.staged_search = ""
        self.active_search = None
        self.session.remove(SEARCH_KEY)
        self.page = 1
        self.selection.clear()
        await self.load()

    # Pagination

    async def go_to_page(self, page: int) -> None:
        if page < 1:
            return
        self.page = page
        self.selection.clear()
        await self.load()

    async def next_page(self) -> None:
        if self.pagination and self.pagination.has_next_page:
            await self.go_to_page(self.page + 1)

    async def previous_page(self) -> None:
        if self.pagination and self.pagination.has_prev_page:
            await self.go_to_page(self.page - 1)

    # Selection

    @property
    def visible_ids(self) -> List[str]:
        return [book.id for book in self.books]

    def toggle_selection(self, book_id: str) -> None:
        if book_id in self.selection:
            self.selection.discard(book_id)
        else:
            self.selection.add(book_id)

    def toggle_select_all(self) -> None:
        """Select every visible book, or deselect them if all are selected."""
        visible = set(self.visible_ids)
        if visible and visible <= self.selection:
            self.selection -= visible
        else:
            self.selection |= visible

    # Sorting

    def sort_by(self, column: str) -> None:
        """Sort the loaded page locally; clicking the same column flips the order."""
        if column not in SORTABLE_COLUMNS:
            raise ValueError(f"Cannot sort by {column}")
        if self.sort_column == column:
            self.sort_ascending = not self.sort_ascending
        else:
            self.sort_column = column
            self.sort_ascending = True

        present = [book for book in self.books if getattr(book, column) is not None]
        missing = [book for book in self.books if getattr(book, column) is None]
        present.sort(key=lambda book: _sort_key(getattr(book, column)), reverse=not self.sort_ascending)
        # Books without a value always go last
        self.books = present + missing

    # Single delete

    async def request_delete(self, book_id: str) -> bool:
        """
        Delete button handler. The first click arms, a second click within
        the confirmation window deletes.
        """
        return await self.confirmation.activate(book_id)

    async def _delete_confirmed(self, book_id: str) -> None:
        try:
            await self.client.delete_book(book_id)
        except ClientError as e:
            self.notifier.error(e.message)
            return
        self._remove_local([book_id])
        self.notifier.success("Book deleted successfully.")

    # Bulk delete

    def request_bulk_delete(self) -> bool:
        """Open the confirmation for the current selection."""
        if not self.selection:
            return False
        self.bulk_confirm_open = True
        return True

    def cancel_bulk_delete(self) -> None:
        self.bulk_confirm_open = False

    async def confirm_bulk_delete(self) -> Optional[BulkDeleteOutcome]:
        """
        Delete every selected book concurrently and wait for all of them.

        Succeeded ids leave the local list; failed ones stay listed and stay
        selected. One aggregate notification reports the outcome.
        """
        if not self.bulk_confirm_open:
            return None
        self.bulk_confirm_open = False

        book_ids = sorted(self.selection)
        results = await asyncio.gather(
            *(self.client.delete_book(book_id) for book_id in book_ids),
            return_exceptions=True
        )

        outcome = BulkDeleteOutcome()
        for book_id, result in zip(book_ids, results):
            if isinstance(result, ClientError):
                outcome.failed[book_id] = result.message
            elif isinstance(result, Exception):
                logger.error("Unexpected bulk delete failure", book_id=book_id, error=str(result))
                outcome.failed[book_id] = "Unexpected error."
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome.succeeded.append(book_id)

        self._remove_local(outcome.succeeded)
        self.selection = set(outcome.failed)

        if outcome.all_succeeded:
            self.notifier.success(f"{len(outcome.succeeded)} book(s) deleted successfully.")
        elif outcome.partial:
            self.notifier.warning(
                f"{len(outcome.succeeded)} book(s) deleted, {len(outcome.failed)} could not be deleted."
            )
        else:
            self.notifier.error(f"Could not delete {len(outcome.failed)} book(s).")

        logger.info(
            "Bulk delete finished",
            succeeded=len(outcome.succeeded),
            failed=len(outcome.failed)
        )
        return outcome

    def _remove_local(self, book_ids: List[str]) -> None:
        removed = set(book_ids)
        if not removed:
            return
        before = len(self.books)
        self.books = [book for book in self.books if book.id not in removed]
        self.selection -= removed
        if self.pagination is not None:
            self.pagination.total = max(self.pagination.total - (before - len(self.books)), 0)


def _sort_key(value):
    if isinstance(value, str):
        return value.casefold()
    return value
