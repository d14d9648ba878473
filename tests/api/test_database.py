"""
Tests for the database service layer.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from bson import ObjectId

from api.database import APIDatabaseService, _parse_price_term
from api.errors import (
    AccessDeniedError, BookNotFoundError, InvalidIdError, InvalidUserIdError,
    UsernameTakenError, UserNotFoundError
)
from api.models import BookCreate, BookUpdate, CollectionQueryParams, SearchQueryParams


@pytest_asyncio.fixture
async def owner(db_service):
    user = await db_service.create_user("alice", "hash")
    return user.id


class TestUsers:
    """Test cases for user persistence."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, db_service):
        user = await db_service.create_user("alice", "hash")
        assert user.username == "alice"
        assert user.is_active is True

        document = await db_service.get_user_by_id(user.id)
        assert document["password_hash"] == "hash"
        assert await db_service.get_user_by_id("bad-id") is None

    @pytest.mark.asyncio
    async def test_duplicate_username(self, db_service):
        await db_service.create_user("alice", "hash")
        with pytest.raises(UsernameTakenError):
            await db_service.create_user("alice", "other")

    @pytest.mark.asyncio
    async def test_duplicate_key_race(self, db_service, monkeypatch):
        await db_service.create_indexes()
        await db_service.create_user("alice", "hash")
        # Both registrations passed the existence check
        monkeypatch.setattr(db_service, "get_user_by_username", AsyncMock(return_value=None))
        with pytest.raises(UsernameTakenError):
            await db_service.create_user("alice", "other")

    @pytest.mark.asyncio
    async def test_update_password_unknown_user(self, db_service):
        with pytest.raises(UserNotFoundError):
            await db_service.update_password(str(ObjectId()), "hash")
        with pytest.raises(InvalidUserIdError):
            await db_service.update_password("not-an-id", "hash")

    @pytest.mark.asyncio
    async def test_set_user_active(self, db_service):
        await db_service.create_user("alice", "hash")
        assert await db_service.set_user_active("alice", False) is True
        assert await db_service.set_user_active("nobody", False) is False

        users = await db_service.list_users()
        assert [(user.username, user.is_active) for user in users] == [("alice", False)]


class TestBooks:
    """Test cases for ownership-scoped book persistence."""

    @pytest.mark.asyncio
    async def test_create_adds_to_collection_once(self, db_service, owner):
        book = await db_service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=29.9))
        user = await db_service.get_user_by_id(owner)
        assert user["owned_book_ids"] == [ObjectId(book.id)]
        assert book.owner_id == owner
        assert book.price == 29.9

    @pytest.mark.asyncio
    async def test_failed_collection_update_removes_book(self, db_service, fake_db, owner, monkeypatch):
        monkeypatch.setattr(
            db_service.users_collection, "update_one",
            AsyncMock(side_effect=RuntimeError("connection reset"))
        )
        with pytest.raises(RuntimeError):
            await db_service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=1))

        assert fake_db["books"].documents == []
        assert (await db_service.get_user_by_id(owner))["owned_book_ids"] == []

    @pytest.mark.asyncio
    async def test_ownership_checks(self, db_service, owner):
        book = await db_service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=1))
        stranger = (await db_service.create_user("bob", "hash")).id

        with pytest.raises(InvalidIdError):
            await db_service.get_book(owner, "123")
        with pytest.raises(BookNotFoundError):
            await db_service.get_book(owner, str(ObjectId()))
        with pytest.raises(AccessDeniedError):
            await db_service.get_book(stranger, book.id)
        with pytest.raises(AccessDeniedError):
            await db_service.update_book(stranger, book.id, BookUpdate(title="Mine"))
        with pytest.raises(AccessDeniedError):
            await db_service.delete_book(stranger, book.id)

    @pytest.mark.asyncio
    async def test_update_bumps_updated_at(self, db_service, owner):
        book = await db_service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=1))
        updated = await db_service.update_book(owner, book.id, BookUpdate(pages=412))
        assert updated.pages == 412
        assert updated.title == "Dune"
        assert updated.updated_at >= book.updated_at

    @pytest.mark.asyncio
    async def test_delete_pulls_from_collection(self, db_service, owner):
        book = await db_service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=1))
        await db_service.delete_book(owner, book.id)
        user = await db_service.get_user_by_id(owner)
        assert user["owned_book_ids"] == []
        with pytest.raises(BookNotFoundError):
            await db_service.delete_book(owner, book.id)

    @pytest.mark.asyncio
    async def test_delete_in_transaction(self, fake_db, owner):
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)
        transaction = MagicMock()
        transaction.__aenter__ = AsyncMock(return_value=None)
        transaction.__aexit__ = AsyncMock(return_value=False)
        session.start_transaction.return_value = transaction
        fake_db.client = SimpleNamespace(start_session=AsyncMock(return_value=session))

        service = APIDatabaseService(fake_db, use_transactions=True)
        book = await service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=1))
        await service.delete_book(owner, book.id)

        assert fake_db.client.start_session.await_count == 2
        assert transaction.__aenter__.await_count == 2
        assert (await service.get_user_by_id(owner))["owned_book_ids"] == []


class TestQueries:
    """Test cases for search, collection and reconciliation."""

    @pytest.mark.asyncio
    async def test_search(self, db_service, owner):
        await db_service.create_book(owner, BookCreate(title="Dune", author="Herbert", price=29.9))
        await db_service.create_book(owner, BookCreate(title="Emma", author="Austen", price=12.5))

        books, pagination = await db_service.search_books(owner, SearchQueryParams(query="29.90"))
        assert [book.title for book in books] == ["Dune"]
        assert pagination.total_count == 1

        books, pagination = await db_service.search_books(owner, SearchQueryParams(query="zzz"))
        assert books == []
        assert pagination.total_pages == 0
        assert pagination.has_next_page is False

    @pytest.mark.asyncio
    async def test_reconcile_collection(self, db_service, fake_db, owner):
        kept = await db_service.create_book(owner, BookCreate(title="Kept", author="A", price=1))
        lost = await db_service.create_book(owner, BookCreate(title="Lost", author="A", price=1))
        await fake_db["books"].delete_one({"_id": ObjectId(lost.id)})

        removed = await db_service.reconcile_collection(owner)
        assert removed == [lost.id]
        assert (await db_service.get_user_by_id(owner))["owned_book_ids"] == [ObjectId(kept.id)]
        assert await db_service.reconcile_collection(owner) == []

    @pytest.mark.asyncio
    async def test_reconcile_unknown_user(self, db_service):
        with pytest.raises(UserNotFoundError):
            await db_service.reconcile_collection(str(ObjectId()))

    @pytest.mark.asyncio
    async def test_collection_pagination(self, db_service, owner):
        for title in ("A", "B", "C"):
            await db_service.create_book(owner, BookCreate(title=title, author="X", price=1))

        books, pagination = await db_service.get_collection(
            owner, CollectionQueryParams(page=2, limit=2, sort_by="title", sort_order="asc")
        )
        assert [book.title for book in books] == ["C"]
        assert pagination.total_books == 3
        assert pagination.prev_page == 1
        assert pagination.next_page is None

    @pytest.mark.asyncio
    async def test_health_check(self, db_service):
        assert await db_service.health_check() == {"status": "healthy"}

    @pytest.mark.parametrize("term,expected", [
        ("29.9", "29.90"),
        ("7", "7.00"),
        ("1.234", None),
        ("dune", None),
        ("NaN", None),
    ])
    def test_parse_price_term(self, term, expected):
        price = _parse_price_term(term)
        assert (str(price) if price is not None else None) == expected
