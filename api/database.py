"""
Database service layer for the FastAPI application.

All book reads and writes are scoped to the requesting owner. Ownership and
identifier checks happen here, before any mutation reaches MongoDB.
"""

import math
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog
from bson import Decimal128, ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from api.errors import (
    AccessDeniedError, APIError, BookNotFoundError, InvalidIdError,
    InvalidUserIdError, UsernameTakenError, UserNotFoundError
)
from api.models import (
    BookCreate, BookResponse, BookUpdate, CollectionPagination,
    CollectionQueryParams, SearchPagination, SearchQueryParams,
    SortBy, SortOrder, UserResponse, PRICE_QUANTUM, is_object_id, normalize_price
)
from utilities.logger import AuditLogger

logger = structlog.get_logger(__name__)

# Wire sort keys to stored document keys
SORT_FIELDS = {
    SortBy.CREATED_AT: "created_at",
    SortBy.UPDATED_AT: "updated_at",
    SortBy.TITLE: "title",
    SortBy.AUTHOR: "author",
    SortBy.PRICE: "price",
    SortBy.PUBLISHED_DATE: "published_date",
    SortBy.PAGES: "pages",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_document(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert validated payload values into BSON-friendly values."""
    document = {}
    for key, value in fields.items():
        if isinstance(value, Decimal):
            value = Decimal128(str(value))
        elif key == "cover_url" and value is not None:
            value = str(value)
        elif isinstance(value, Enum):
            value = value.value
        document[key] = value
    return document


def _decode_price(price: Any) -> Optional[float]:
    if price is None:
        return None
    if isinstance(price, Decimal128):
        return float(price.to_decimal())
    return float(price)


def _to_book_response(document: Dict[str, Any]) -> BookResponse:
    """Build the API representation of a stored book."""
    data = {
        key: value for key, value in document.items()
        if key not in ("_id", "owner_id", "price")
    }
    data["id"] = str(document["_id"])
    data["owner_id"] = str(document["owner_id"])
    data["price"] = _decode_price(document.get("price"))
    return BookResponse(**data)


def _to_user_response(document: Dict[str, Any]) -> UserResponse:
    return UserResponse(
        id=str(document["_id"]),
        username=document["username"],
        is_active=document.get("is_active", True),
        owned_book_ids=[str(book_id) for book_id in document.get("owned_book_ids", [])],
        created_at=document.get("created_at")
    )


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


class APIDatabaseService:
    """Database service for API operations."""

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        users_collection: str = "users",
        books_collection: str = "books",
        use_transactions: bool = False
    ):
        self.database = database
        self.users_collection = database[users_collection]
        self.books_collection = database[books_collection]
        self.use_transactions = use_transactions
        self.audit = AuditLogger("api.database")

    @asynccontextmanager
    async def _write_session(self):
        """
        Yield a session running a transaction when transactions are enabled,
        otherwise None so writes go out one by one.
        """
        if not self.use_transactions:
            yield None
            return

        async with await self.database.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def create_indexes(self) -> None:
        """Create indexes backing uniqueness and the common query patterns."""
        try:
            await self.users_collection.create_index("username", unique=True)
            await self.books_collection.create_index("owner_id")
            await self.books_collection.create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
            # Advisory only; ISBN uniqueness is not enforced
            await self.books_collection.create_index("isbn", sparse=True)
            logger.info("Successfully created MongoDB indexes")
        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    # Users

    async def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a user document by ID.

        Returns:
            The raw document, or None when the ID is malformed or unknown
        """
        if not is_object_id(user_id):
            return None
        return await self.users_collection.find_one({"_id": ObjectId(user_id)})

    async def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return await self.users_collection.find_one({"username": username})

    async def create_user(self, username: str, password_hash: str) -> UserResponse:
        """
        Register a new user.

        Raises:
            UsernameTakenError: The username is already in use
        """
        if await self.get_user_by_username(username) is not None:
            raise UsernameTakenError()

        now = _utcnow()
        document = {
            "username": username,
            "password_hash": password_hash,
            "is_active": True,
            "owned_book_ids": [],
            "created_at": now,
            "updated_at": now,
        }

        try:
            result = await self.users_collection.insert_one(document)
        except DuplicateKeyError:
            # Lost a race against a concurrent registration
            raise UsernameTakenError()

        document["_id"] = result.inserted_id
        logger.info("User created", user_id=str(result.inserted_id), username=username)
        return _to_user_response(document)

    async def update_password(self, user_id: str, password_hash: str) -> None:
        """
        Replace a user's password hash.

        Raises:
            InvalidUserIdError: The ID is not a well-formed ObjectId
            UserNotFoundError: No user has this ID
        """
        if not is_object_id(user_id):
            raise InvalidUserIdError()

        result = await self.users_collection.update_one(
            {"_id": ObjectId(user_id)},
            {"$set": {"password_hash": password_hash, "updated_at": _utcnow()}}
        )
        if result.matched_count == 0:
            raise UserNotFoundError()

        logger.info("Password updated", user_id=user_id)

    async def set_user_active(self, username: str, is_active: bool) -> bool:
        """
        Enable or disable an account.

        Returns:
            True if the user exists
        """
        result = await self.users_collection.update_one(
            {"username": username},
            {"$set": {"is_active": is_active, "updated_at": _utcnow()}}
        )
        if result.matched_count:
            logger.info("User activity changed", username=username, is_active=is_active)
        return result.matched_count > 0

    async def list_users(self) -> List[UserResponse]:
        cursor = self.users_collection.find({}).sort([("created_at", ASCENDING)])
        documents = await cursor.to_list(length=None)
        return [_to_user_response(document) for document in documents]

    # Books

    async def _get_owned_book(self, owner_id: str, book_id: str, operation: str) -> Dict[str, Any]:
        """
        Load a book and verify that the caller owns it.

        Raises:
            InvalidIdError: The ID is not a well-formed ObjectId
            BookNotFoundError: No book has this ID
            AccessDeniedError: The book belongs to someone else
        """
        if not is_object_id(book_id):
            raise InvalidIdError()

        document = await self.books_collection.find_one({"_id": ObjectId(book_id)})
        if document is None:
            raise BookNotFoundError()

        if str(document.get("owner_id")) != owner_id:
            self.audit.log_access_denied(owner_id, book_id, operation)
            raise AccessDeniedError()

        return document

    async def create_book(self, owner_id: str, book: BookCreate) -> BookResponse:
        """
        Persist a new book owned by the caller and add it to their collection.

        Args:
            owner_id: ID of the authenticated user
            book: Validated create payload

        Returns:
            The stored book
        """
        owner = ObjectId(owner_id)
        now = _utcnow()
        document = _to_document(book.model_dump(exclude_none=True))
        document.update({"owner_id": owner, "created_at": now, "updated_at": now})

        try:
            async with self._write_session() as session:
                result = await self.books_collection.insert_one(document, session=session)
                try:
                    await self.users_collection.update_one(
                        {"_id": owner},
                        {"$addToSet": {"owned_book_ids": result.inserted_id}},
                        session=session
                    )
                except Exception:
                    # Without a transaction nothing else undoes the insert
                    if session is None:
                        await self.books_collection.delete_one({"_id": result.inserted_id})
                    raise
        except Exception as e:
            logger.error("Failed to create book", owner_id=owner_id, error=str(e))
            raise

        document["_id"] = result.inserted_id
        self.audit.log_book_mutation("create", owner_id, str(result.inserted_id))
        return _to_book_response(document)

    async def get_book(self, owner_id: str, book_id: str) -> BookResponse:
        document = await self._get_owned_book(owner_id, book_id, "read")
        return _to_book_response(document)

    async def search_books(
        self,
        owner_id: str,
        query_params: SearchQueryParams
    ) -> Tuple[List[BookResponse], SearchPagination]:
        """
        Search the caller's books by title, author and description, and by
        exact price when the term is numeric.

        Args:
            owner_id: ID of the authenticated user
            query_params: Validated search term and pagination

        Returns:
            The page of matching books and its pagination metadata
        """
        term = query_params.query
        pattern = {"$regex": re.escape(term), "$options": "i"}
        clauses: List[Dict[str, Any]] = [
            {"title": pattern},
            {"author": pattern},
            {"description": pattern},
        ]

        price = _parse_price_term(term)
        if price is not None:
            clauses.append({"price": Decimal128(str(price))})

        filter_query = {"owner_id": ObjectId(owner_id), "$or": clauses}
        skip = (query_params.page - 1) * query_params.limit

        try:
            total = await self.books_collection.count_documents(filter_query)
            cursor = (
                self.books_collection.find(filter_query)
                .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
                .skip(skip)
                .limit(query_params.limit)
            )
            documents = await cursor.to_list(length=query_params.limit)
        except Exception as e:
            logger.error("Failed to search books", owner_id=owner_id, query=term, error=str(e))
            raise

        total_pages = _total_pages(total, query_params.limit)
        pagination = SearchPagination(
            current_page=query_params.page,
            total_pages=total_pages,
            total_count=total,
            has_next_page=query_params.page < total_pages,
            has_prev_page=query_params.page > 1,
            limit=query_params.limit
        )
        return [_to_book_response(document) for document in documents], pagination

    async def update_book(self, owner_id: str, book_id: str, changes: BookUpdate) -> BookResponse:
        """
        Apply a partial update to one of the caller's books.

        Only the fields present in the payload are written; everything else
        keeps its stored value.
        """
        await self._get_owned_book(owner_id, book_id, "update")

        fields = _to_document(changes.model_dump(exclude_unset=True))
        fields["updated_at"] = _utcnow()

        document = await self.books_collection.find_one_and_update(
            {"_id": ObjectId(book_id), "owner_id": ObjectId(owner_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER
        )
        if document is None:
            # Deleted between the ownership check and the write
            raise BookNotFoundError()

        self.audit.log_book_mutation(
            "update", owner_id, book_id,
            fields=sorted(key for key in fields if key != "updated_at")
        )
        return _to_book_response(document)

    async def delete_book(self, owner_id: str, book_id: str) -> None:
        """
        Delete one of the caller's books and remove it from their collection.

        The book is removed first and the collection list last; without
        transactions a failure in between leaves a dangling id that
        reconcile_collection later sweeps away.
        """
        await self._get_owned_book(owner_id, book_id, "delete")
        book_oid = ObjectId(book_id)

        async with self._write_session() as session:
            result = await self.books_collection.delete_one(
                {"_id": book_oid, "owner_id": ObjectId(owner_id)}, session=session
            )
            if result.deleted_count == 0:
                raise BookNotFoundError()
            await self.users_collection.update_one(
                {"_id": ObjectId(owner_id)},
                {"$pull": {"owned_book_ids": book_oid}},
                session=session
            )

        self.audit.log_book_mutation("delete", owner_id, book_id)

    async def reconcile_collection(
        self,
        user_id: str,
        owned_ids: Optional[List[ObjectId]] = None
    ) -> List[str]:
        """
        Remove ids from a user's collection that no longer match one of
        their books.

        Returns:
            The removed ids
        """
        if owned_ids is None:
            user = await self.get_user_by_id(user_id)
            if user is None:
                raise UserNotFoundError()
            owned_ids = user.get("owned_book_ids", [])

        if not owned_ids:
            return []

        cursor = self.books_collection.find(
            {"_id": {"$in": owned_ids}, "owner_id": ObjectId(user_id)},
            {"_id": 1}
        )
        existing = {document["_id"] for document in await cursor.to_list(length=None)}
        dangling = [book_id for book_id in owned_ids if book_id not in existing]

        if dangling:
            await self.users_collection.update_one(
                {"_id": ObjectId(user_id)},
                {"$pull": {"owned_book_ids": {"$in": dangling}}}
            )
            self.audit.log_reconciliation(user_id, [str(book_id) for book_id in dangling])

        return [str(book_id) for book_id in dangling]

    async def get_collection(
        self,
        user_id: str,
        query_params: CollectionQueryParams
    ) -> Tuple[List[BookResponse], CollectionPagination]:
        """
        Get a page of the caller's collection.

        Args:
            user_id: ID of the authenticated user
            query_params: Pagination and sort options

        Returns:
            The page of books and its pagination metadata
        """
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise UserNotFoundError()

        owned_ids = user.get("owned_book_ids", [])
        filter_query = {"_id": {"$in": owned_ids}, "owner_id": ObjectId(user_id)}

        total = await self.books_collection.count_documents(filter_query)
        if total < len(owned_ids):
            await self.reconcile_collection(user_id, owned_ids)

        direction = ASCENDING if query_params.sort_order == SortOrder.ASC else DESCENDING
        sort_field = SORT_FIELDS[query_params.sort_by]
        skip = (query_params.page - 1) * query_params.limit

        cursor = (
            self.books_collection.find(filter_query)
            .sort([(sort_field, direction), ("_id", direction)])
            .skip(skip)
            .limit(query_params.limit)
        )
        documents = await cursor.to_list(length=query_params.limit)

        page = query_params.page
        total_pages = _total_pages(total, query_params.limit)
        pagination = CollectionPagination(
            current_page=page,
            total_pages=total_pages,
            total_books=total,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
            limit=query_params.limit,
            next_page=page + 1 if page < total_pages else None,
            prev_page=page - 1 if page > 1 else None
        )
        return [_to_book_response(document) for document in documents], pagination

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            return {"status": "healthy"}
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }


def _parse_price_term(term: str) -> Optional[Decimal]:
    """Numeric search terms also match the exact price."""
    try:
        price = normalize_price(term)
        if price.as_tuple().exponent < -2:
            return None
        return price.quantize(PRICE_QUANTUM)
    except (ValueError, InvalidOperation):
        return None


# Set by the application lifespan
db_service: Optional[APIDatabaseService] = None


def get_db_service() -> APIDatabaseService:
    """FastAPI dependency returning the active database service."""
    if db_service is None:
        raise APIError("Database service not available")
    return db_service
