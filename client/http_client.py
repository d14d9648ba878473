"""
Async HTTP client for the Bookshelf API.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from client.auth_context import AuthContext
from client.config import config as client_config
from client.errors import (
    APIRequestError, NetworkError, RequestTimeoutError, SessionExpiredError,
    SESSION_ENDED_CODES
)
from client.models import Book, BookPage, LoginResult, UserInfo

logger = structlog.get_logger(__name__)


class BookshelfClient:
    """
    Thin wrapper over httpx.AsyncClient.

    Attaches the bearer token from the auth context to every request, applies
    a fixed timeout and turns error responses into ClientError subclasses.
    Requests are never retried automatically.
    """

    def __init__(
        self,
        auth: AuthContext,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.auth = auth
        self.client_config = {
            "base_url": base_url or client_config.api_base_url,
            "timeout": timeout if timeout is not None else client_config.request_timeout,
            "headers": {"Accept": "application/json"},
        }
        if transport is not None:
            self.client_config["transport"] = transport
        self._client = httpx.AsyncClient(**self.client_config)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True
    ) -> Dict[str, Any]:
        headers = {}
        if authenticated and self.auth.token:
            headers["Authorization"] = f"Bearer {self.auth.token}"

        try:
            response = await self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Request timed out", method=method, path=path)
            raise RequestTimeoutError() from e
        except httpx.RequestError as e:
            logger.warning("Request failed", method=method, path=path, error=str(e))
            raise NetworkError() from e

        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                logger.warning("Unreadable response body", method=method, path=path,
                               status_code=response.status_code)
                raise APIRequestError(
                    response.status_code, "INVALID_RESPONSE", "The server sent an unreadable response."
                ) from e

        self._raise_for_error(response)

    def _raise_for_error(self, response: httpx.Response) -> None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        code = body.get("code") or "HTTP_ERROR"
        message = body.get("message") or response.reason_phrase or "Request failed."
        errors = body.get("errors")

        logger.info(
            "API error",
            path=response.request.url.path,
            status_code=response.status_code,
            code=code
        )

        if code in SESSION_ENDED_CODES:
            self.auth.handle_session_error(code)
            raise SessionExpiredError(response.status_code, code, message, errors)
        raise APIRequestError(response.status_code, code, message, errors)

    # Users

    async def register(self, username: str, password: str) -> UserInfo:
        body = await self._request(
            "POST", "/users/create",
            json={"username": username, "password": password},
            authenticated=False
        )
        return UserInfo.model_validate(body["user"])

    async def login(self, username: str, password: str) -> LoginResult:
        """Log in and hand the token to the auth context."""
        body = await self._request(
            "POST", "/users",
            json={"username": username, "password": password},
            authenticated=False
        )
        result = LoginResult.model_validate(body)
        self.auth.login(result.token)
        return result

    async def reset_password(self, user_id: str, new_password: str) -> None:
        await self._request("PUT", "/users/reset", json={"id": user_id, "newPassword": new_password})

    async def get_collection(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "createdAt",
        sort_order: str = "desc"
    ) -> BookPage:
        body = await self._request(
            "GET", "/users",
            params={"page": page, "limit": limit, "sortBy": sort_by, "sortOrder": sort_order}
        )
        return BookPage.model_validate(body)

    # Books

    async def search_books(self, query: str, page: int = 1, limit: int = 10) -> BookPage:
        body = await self._request("GET", "/books", params={"q": query, "page": page, "limit": limit})
        return BookPage.model_validate(body)

    async def get_book(self, book_id: str) -> Book:
        body = await self._request("GET", f"/books/{book_id}")
        return Book.model_validate(body["book"])

    async def create_book(self, payload: Dict[str, Any]) -> Book:
        body = await self._request("POST", "/books", json=payload)
        return Book.model_validate(body["book"])

    async def update_book(self, book_id: str, changes: Dict[str, Any]) -> Book:
        body = await self._request("PUT", f"/books/{book_id}", json=changes)
        return Book.model_validate(body["book"])

    async def delete_book(self, book_id: str) -> None:
        await self._request("DELETE", f"/books/{book_id}")

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health", authenticated=False)
