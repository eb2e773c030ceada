"""
Cancellation tokens for pipeline activities.

A CancelToken identifies one asynchronous activity (a query stage or a model
pull). Events produced by that activity carry the token, so a handler can tell
a current event from a late one by identity. A CancellationController owns at
most one live token for its activity.
"""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancelToken:
    """Cancellation handle for one activity. cancel() is idempotent."""

    def __init__(self, label: str = ""):
        self.label = label
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run callback on cancellation, immediately if already cancelled."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"CancelToken({self.label!r}, {state})"


class CancellationController:
    """
    Owns the token of whichever activity is currently live.

    Arming while a token is still held is a caller error: the previous
    activity must be cleared or cancelled first.
    """

    def __init__(self, name: str):
        self.name = name
        self._token: CancelToken | None = None

    @property
    def token(self) -> CancelToken | None:
        return self._token

    @property
    def armed(self) -> bool:
        return self._token is not None

    def arm(self) -> CancelToken:
        """Create the token for a new activity."""
        if self._token is not None:
            raise RuntimeError(f"{self.name} already has a live cancellation token")
        self._token = CancelToken(self.name)
        return self._token

    def clear(self) -> None:
        """Forget the current token without cancelling it (activity finished)."""
        self._token = None

    def cancel(self) -> bool:
        """
        Cancel and release the current token.

        Returns:
            True if a token was cancelled, False if nothing was live.
        """
        token, self._token = self._token, None
        if token is None:
            return False
        logger.debug(f"Cancelling {self.name} activity")
        token.cancel()
        return True
