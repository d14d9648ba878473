"""
Pytest configuration and shared fixtures.

The API tests run against an in-memory stand-in for a Motor database that
implements the subset of the collection API the service layer uses.
"""

import copy
import re
from types import SimpleNamespace

import pytest
from bson import Decimal128, ObjectId
from fastapi.testclient import TestClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from api.auth import PasswordHasher, TokenManager, get_password_hasher, get_token_manager
from api.database import APIDatabaseService, get_db_service
from api.main import app


def _field_matches(value, condition) -> bool:
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        for operator, argument in condition.items():
            if operator == "$in":
                if isinstance(value, list):
                    matched = any(item in argument for item in value)
                else:
                    matched = value in argument
            elif operator == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                matched = isinstance(value, str) and re.search(argument, value, flags) is not None
            elif operator == "$options":
                continue
            else:
                raise NotImplementedError(operator)
            if not matched:
                return False
        return True

    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value == condition


def matches(document, query) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(document, clause) for clause in condition):
                return False
        elif not _field_matches(document.get(key), condition):
            return False
    return True


def _sort_value(value):
    # Mongo orders null before any value
    if value is None:
        return (0, 0)
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    return (1, value)


class FakeCursor:
    def __init__(self, documents):
        self._documents = documents
        self._skip = 0
        self._limit = 0

    def sort(self, keys):
        for field, direction in reversed(keys):
            self._documents.sort(key=lambda doc: _sort_value(doc.get(field)), reverse=direction < 0)
        return self

    def skip(self, count):
        self._skip = count
        return self

    def limit(self, count):
        self._limit = count
        return self

    async def to_list(self, length=None):
        documents = self._documents[self._skip:]
        if self._limit:
            documents = documents[:self._limit]
        if length is not None:
            documents = documents[:length]
        return documents


class FakeCollection:
    def __init__(self):
        self.documents = []
        self.unique_fields = []

    async def create_index(self, keys, unique=False, **kwargs):
        if unique and isinstance(keys, str):
            self.unique_fields.append(keys)
        return keys

    async def insert_one(self, document, session=None):
        for field in self.unique_fields:
            if any(existing.get(field) == document.get(field) for existing in self.documents):
                raise DuplicateKeyError(f"duplicate key: {field}")
        document.setdefault("_id", ObjectId())
        self.documents.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"])

    async def find_one(self, query, projection=None, session=None):
        for document in self.documents:
            if matches(document, query):
                return self._project(document, projection)
        return None

    def find(self, query=None, projection=None):
        found = [self._project(doc, projection) for doc in self.documents if matches(doc, query or {})]
        return FakeCursor(found)

    async def count_documents(self, query, session=None):
        return sum(1 for document in self.documents if matches(document, query))

    async def update_one(self, query, update, session=None):
        for document in self.documents:
            if matches(document, query):
                changed = self._apply(document, update)
                return SimpleNamespace(matched_count=1, modified_count=int(changed))
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE, session=None):
        for document in self.documents:
            if matches(document, query):
                before = copy.deepcopy(document)
                self._apply(document, update)
                return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before
        return None

    async def delete_one(self, query, session=None):
        for index, document in enumerate(self.documents):
            if matches(document, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    @staticmethod
    def _project(document, projection):
        if not projection:
            return copy.deepcopy(document)
        keys = {key for key, include in projection.items() if include} | {"_id"}
        return {key: copy.deepcopy(value) for key, value in document.items() if key in keys}

    @staticmethod
    def _apply(document, update) -> bool:
        before = copy.deepcopy(document)
        for operator, fields in update.items():
            for field, value in fields.items():
                if operator == "$set":
                    document[field] = value
                elif operator == "$addToSet":
                    items = document.setdefault(field, [])
                    if value not in items:
                        items.append(value)
                elif operator == "$push":
                    document.setdefault(field, []).append(value)
                elif operator == "$pull":
                    items = document.get(field, [])
                    if isinstance(value, dict) and "$in" in value:
                        document[field] = [item for item in items if item not in value["$in"]]
                    else:
                        document[field] = [item for item in items if item != value]
                else:
                    raise NotImplementedError(operator)
        return document != before


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    async def command(self, name):
        return {"ok": 1.0}


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def db_service(fake_db):
    return APIDatabaseService(fake_db)


@pytest.fixture
def password_hasher():
    """Minimum bcrypt cost keeps the suite fast."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def token_manager():
    return TokenManager(secret_key="test-secret-key", algorithm="HS256", expire_days=7)


@pytest.fixture
def client(db_service, password_hasher, token_manager):
    """Test client wired to the in-memory database; lifespan is not run."""
    app.dependency_overrides[get_db_service] = lambda: db_service
    app.dependency_overrides[get_password_hasher] = lambda: password_hasher
    app.dependency_overrides[get_token_manager] = lambda: token_manager
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register_and_login(client):
    """Create a user through the API and return (headers, user_id)."""
    def _register_and_login(username="alice", password="secret1"):
        response = client.post("/users/create", json={"username": username, "password": password})
        assert response.status_code == 201
        response = client.post("/users", json={"username": username, "password": password})
        assert response.status_code == 200
        body = response.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]["id"]
    return _register_and_login


@pytest.fixture
def sample_book():
    return {
        "title": "Dune",
        "author": "Frank Herbert",
        "description": "Desert planet epic",
        "price": 29.90,
        "isbn": "9780441172719",
        "genre": "Science Fiction",
        "publisher": "Ace",
        "publishedDate": "1965-08-01T00:00:00Z",
        "pages": 412,
        "language": "Inglês",
        "condition": "Seminovo",
        "status": "disponivel",
        "coverUrl": "https://covers.openlibrary.org/b/id/12345-L.jpg",
    }
