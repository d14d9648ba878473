"""
Client authentication context.

All reads and writes of the stored token go through AuthContext; the router
consults it to guard protected views.
"""

from typing import Optional

import structlog

from client.errors import SESSION_ENDED_CODES
from client.routing import HOME_PATH, LOGIN_PATH, Router
from client.storage import SEARCH_KEY, TOKEN_KEY, VIEW_MODE_KEY, PersistentStore, SessionStore

logger = structlog.get_logger(__name__)


class AuthContext:
    """Login state derived from a stored token."""

    def __init__(
        self,
        store: PersistentStore,
        session: Optional[SessionStore] = None,
        router: Optional[Router] = None
    ):
        self.store = store
        self.session = session if session is not None else SessionStore()
        self.router = router
        if router is not None:
            router.attach(self)

    @property
    def token(self) -> Optional[str]:
        token = self.store.get(TOKEN_KEY)
        return token or None

    @property
    def is_logged_in(self) -> bool:
        # No round-trip; an expired token is only discovered by a failed call
        return self.token is not None

    def login(self, token: str) -> None:
        """Store the token and go to the main view."""
        if not token:
            raise ValueError("Token must be a non-empty string")
        self.store.set(TOKEN_KEY, token)
        logger.info("Logged in")
        if self.router is not None:
            self.router.navigate(HOME_PATH)

    def logout(self) -> None:
        """Forget the token and cached view preferences, then go to the login view."""
        self.store.remove(TOKEN_KEY)
        self.store.remove(VIEW_MODE_KEY)
        self.session.remove(SEARCH_KEY)
        logger.info("Logged out")
        if self.router is not None:
            self.router.navigate(LOGIN_PATH)

    def handle_session_error(self, code: str) -> bool:
        """
        Treat token failures reported by the API as an implicit logout.

        Returns:
            True if the code ended the session
        """
        if code not in SESSION_ENDED_CODES:
            return False
        logger.info("Session ended by server", code=code)
        self.logout()
        return True
