"""
Two-step delete confirmation.

The first activation on an item arms it; a second activation on the same
item before the window closes performs the delete. Activating a different
item disarms the previous one and arms the new one.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class ConfirmState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    DELETING = "deleting"


class DeleteConfirmation:
    """
    State machine {IDLE, ARMED(deadline), DELETING} with a single scheduled
    disarm callback per arm transition.
    """

    def __init__(
        self,
        on_confirm: Callable[[str], Awaitable[None]],
        window: float = 3.0
    ):
        self.on_confirm = on_confirm
        self.window = window
        self.state = ConfirmState.IDLE
        self.armed_id: Optional[str] = None
        self.deadline: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    def is_armed(self, book_id: str) -> bool:
        return self.state == ConfirmState.ARMED and self.armed_id == book_id

    async def activate(self, book_id: str) -> bool:
        """
        Handle a delete activation on `book_id`.

        Returns:
            True if this activation performed the delete, False if it only armed
        """
        if self.state == ConfirmState.DELETING:
            return False

        loop = asyncio.get_running_loop()
        if self.is_armed(book_id) and loop.time() < self.deadline:
            self._cancel_timer()
            self.state = ConfirmState.DELETING
            try:
                await self.on_confirm(book_id)
            finally:
                self._reset()
            return True

        self._arm(book_id, loop)
        return False

    def cancel(self) -> None:
        """Disarm without deleting."""
        if self.state == ConfirmState.ARMED:
            self._cancel_timer()
            self._reset()

    def _arm(self, book_id: str, loop: asyncio.AbstractEventLoop) -> None:
        self._cancel_timer()
        self.state = ConfirmState.ARMED
        self.armed_id = book_id
        self.deadline = loop.time() + self.window
        self._handle = loop.call_later(self.window, self._expire)
        logger.debug("Delete armed", book_id=book_id, window=self.window)

    def _expire(self) -> None:
        logger.debug("Delete disarmed", book_id=self.armed_id)
        self._handle = None
        self._reset()

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _reset(self) -> None:
        self.state = ConfirmState.IDLE
        self.armed_id = None
        self.deadline = None
