"""
Client-side routing with an authentication guard.
"""

from typing import TYPE_CHECKING, List, Optional

import structlog

if TYPE_CHECKING:
    from client.auth_context import AuthContext

logger = structlog.get_logger(__name__)

HOME_PATH = "/"
LOGIN_PATH = "/login"
PUBLIC_PATHS = frozenset({LOGIN_PATH, "/register"})


class Router:
    """
    Tracks the current view and guards protected paths.

    While logged out every path except the public ones redirects to the
    login view; while logged in the login view redirects home.
    """

    def __init__(self, auth: Optional["AuthContext"] = None):
        self.auth = auth
        self.current_path: Optional[str] = None
        self.history: List[str] = []

    def attach(self, auth: "AuthContext") -> None:
        self.auth = auth

    @staticmethod
    def is_protected(path: str) -> bool:
        return path not in PUBLIC_PATHS

    def resolve(self, path: str) -> str:
        """Return the path a navigation to `path` actually lands on."""
        logged_in = self.auth is not None and self.auth.is_logged_in
        if not logged_in and self.is_protected(path):
            return LOGIN_PATH
        if logged_in and path == LOGIN_PATH:
            return HOME_PATH
        return path

    def navigate(self, path: str) -> str:
        target = self.resolve(path)
        if target != path:
            logger.debug("Redirected", requested=path, target=target)
        self.current_path = target
        self.history.append(target)
        return target
