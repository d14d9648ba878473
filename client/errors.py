"""
Client-side error taxonomy.

Every failed call to the API surfaces as a ClientError carrying a
machine-readable code and a human-readable message.
"""

from typing import Dict, List, Optional

# Server codes that mean the stored token can no longer be used
SESSION_ENDED_CODES = frozenset({"NO_TOKEN", "TOKEN_EXPIRED", "INVALID_TOKEN"})


class ClientError(Exception):
    """Base class for client failures."""

    code: str = "CLIENT_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class APIRequestError(ClientError):
    """The API answered with an error body."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        errors: Optional[List[Dict[str, str]]] = None
    ):
        super().__init__(message, code)
        self.status_code = status_code
        self.errors = errors or []

    def field_errors(self) -> Dict[str, str]:
        """Inline messages keyed by field name."""
        return {error["field"]: error["message"] for error in self.errors if "field" in error}


class SessionExpiredError(APIRequestError):
    """The token was missing, expired or rejected."""


class RequestTimeoutError(ClientError):
    code = "TIMEOUT"

    def __init__(self, message: str = "The request timed out."):
        super().__init__(message)


class NetworkError(ClientError):
    code = "NETWORK_ERROR"

    def __init__(self, message: str = "Could not reach the server."):
        super().__init__(message)
