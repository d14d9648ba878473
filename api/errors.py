"""
Error taxonomy for the Bookshelf API.

Every error carries an HTTP status, a machine-readable code and a
human-readable message. Services and the auth layer raise these; the
exception handlers in api.main turn them into ErrorResponse bodies.
"""

from typing import Any, List, Optional

from fastapi import status


class APIError(Exception):
    """Base class for errors that map onto an API response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error."

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Any]] = None,
    ):
        if message is not None:
            self.message = message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailedError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Invalid data."


class InvalidIdError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_BOOK_ID"
    message = "Invalid book ID."


class InvalidUserIdError(InvalidIdError):
    code = "INVALID_USER_ID"
    message = "Invalid user ID."


class BookNotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "BOOK_NOT_FOUND"
    message = "Book not found."


class UserNotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "USER_NOT_FOUND"
    message = "User not found."


class AccessDeniedError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"
    message = "Access denied to this book."


class MissingTokenError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "NO_TOKEN"
    message = "Authentication token not provided."


class TokenExpiredError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_EXPIRED"
    message = "Token expired."


class InvalidTokenError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INVALID_TOKEN"
    message = "Invalid token."


class AccountInactiveError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCOUNT_INACTIVE"
    message = "User account is inactive."


class UsernameTakenError(APIError):
    status_code = status.HTTP_409_CONFLICT
    code = "USERNAME_EXISTS"
    message = "Username is already taken."


class InvalidCredentialsError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials."
