"""
Client test fixtures.

FakeAPI answers httpx requests in memory with the same bodies the real API
produces, so the client is exercised end to end without a server.
"""

import json
import math
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from bson import ObjectId

from client.auth_context import AuthContext
from client.http_client import BookshelfClient
from client.notifications import Notifier
from client.routing import Router
from client.storage import PersistentStore, SessionStore

PUBLIC_ROUTES = {("POST", "/users/create"), ("POST", "/users"), ("GET", "/health")}


def _error(status_code, code, message, errors=None):
    body = {"message": message, "code": code}
    if errors:
        body["errors"] = errors
    return httpx.Response(status_code, json=body)


class FakeAPI:
    def __init__(self):
        self.books = {}
        self.requests = []
        self.forbidden_ids = set()
        self.session_code = None
        self.failure = None
        self.responder = None
        self.broken_ids = set()
        self.updates = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def add_book(self, title, author="Someone", price=10.0, **fields):
        self._clock += timedelta(minutes=1)
        book_id = str(ObjectId())
        self.books[book_id] = {
            "id": book_id,
            "title": title,
            "author": author,
            "price": price,
            "condition": "Novo",
            "status": "disponivel",
            "ownerId": "64b7f0c2a1b2c3d4e5f60718",
            "createdAt": self._clock.isoformat(),
            "updatedAt": self._clock.isoformat(),
            **fields,
        }
        return book_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failure is not None:
            raise self.failure(request)
        if self.responder is not None:
            return self.responder(request)

        method, path = request.method, request.url.path
        if (method, path) not in PUBLIC_ROUTES:
            if not request.headers.get("Authorization"):
                return _error(401, "NO_TOKEN", "Authentication token not provided.")
            if self.session_code:
                return _error(401, self.session_code, "Token expired.")

        if method == "POST" and path == "/users":
            credentials = json.loads(request.content)
            if credentials["password"] != "secret1":
                return _error(401, "INVALID_CREDENTIALS", "Invalid credentials.")
            return httpx.Response(200, json={
                "message": "Login successful.",
                "code": "LOGIN_SUCCESS",
                "token": "token-123",
                "user": {"id": "64b7f0c2a1b2c3d4e5f60718", "username": credentials["username"]},
            })
        if method == "POST" and path == "/books":
            fields = json.loads(request.content)
            errors = self._validate(fields, partial=False)
            if errors:
                return _error(400, "VALIDATION_ERROR", "Invalid data.", errors)
            book_id = self.add_book(**fields)
            return httpx.Response(201, json={
                "message": "Book created successfully.", "code": "BOOK_CREATED", "book": self.books[book_id]
            })
        if method == "POST" and path == "/users/create":
            return _error(409, "USERNAME_EXISTS", "Username is already taken.")
        if method == "GET" and path == "/users":
            books = sorted(self.books.values(), key=lambda book: book["createdAt"], reverse=True)
            return httpx.Response(200, json=self._page("Collection", books, request, "totalBooks"))
        if method == "GET" and path == "/books":
            term = request.url.params.get("q", "").lower()
            books = [
                book for book in sorted(self.books.values(), key=lambda b: b["createdAt"], reverse=True)
                if term in book["title"].lower() or term in book["author"].lower()
            ]
            body = self._page("Search", books, request, "totalCount")
            body["searchQuery"] = term
            return httpx.Response(200, json=body)
        if path.startswith("/books/"):
            book_id = path.rsplit("/", 1)[-1]
            if book_id in self.forbidden_ids:
                return _error(403, "ACCESS_DENIED", "Access denied to this book.")
            if book_id not in self.books:
                return _error(404, "BOOK_NOT_FOUND", "Book not found.")
            if book_id in self.broken_ids:
                raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)
            if method == "DELETE":
                del self.books[book_id]
                return httpx.Response(200, json={"message": "Book deleted successfully.", "code": "BOOK_DELETED"})
            if method == "PUT":
                changes = json.loads(request.content)
                errors = self._validate(changes, partial=True)
                if errors:
                    return _error(400, "VALIDATION_ERROR", "Invalid data.", errors)
                self.books[book_id].update(changes)
                self.updates.append((book_id, changes))
            return httpx.Response(200, json={"message": "Book found.", "book": self.books[book_id]})
        return _error(404, "NOT_FOUND", "Not Found")

    def _validate(self, fields, partial):
        """Mirror the server's field checks closely enough to produce 400s."""
        errors = []
        for key in ("title", "author"):
            if (not partial or key in fields) and not str(fields.get(key) or "").strip():
                errors.append({"field": key, "message": f"{key.capitalize()} is required"})
        if not partial or "price" in fields:
            price = fields.get("price")
            if price is None or price <= 0:
                errors.append({"field": "price", "message": "Input should be greater than 0"})
        return errors

    @staticmethod
    def _page(label, books, request, total_key):
        page = int(request.url.params.get("page", 1))
        limit = int(request.url.params.get("limit", 10))
        total_pages = math.ceil(len(books) / limit) if books else 0
        return {
            "message": f"{label} completed.",
            "books": books[(page - 1) * limit:page * limit],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                total_key: len(books),
                "hasNextPage": page < total_pages,
                "hasPrevPage": page > 1,
                "limit": limit,
            },
        }

    def count(self, method, path_prefix):
        return sum(
            1 for request in self.requests
            if request.method == method and request.url.path.startswith(path_prefix)
        )


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def store(tmp_path):
    return PersistentStore(tmp_path / "state.json")


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def router():
    return Router()


@pytest.fixture
def auth(store, session_store, router):
    context = AuthContext(store, session_store, router)
    context.login("token-123")
    return context


@pytest_asyncio.fixture
async def api_client(auth, fake_api):
    client = BookshelfClient(auth, base_url="http://bookshelf.test", transport=httpx.MockTransport(fake_api.handler))
    yield client
    await client.aclose()


@pytest.fixture
def notifier():
    return Notifier()
