"""User-facing notifications for auth outcomes.

The controller reports every success and failure here; UI layers
subscribe to render them (toasts, status lines, CLI output).
"""

from __future__ import annotations

import inspect
import logging

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from .exceptions import ApiError


logger = logging.getLogger("notesauth.auth")


class Variant(str, Enum):
    """Visual weight of a notification."""

    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Notification:
    """A message for the user.

    Attributes
    ----------
    title : str
        Short heading ("Success!", "Not Found", ...).
    description : str
        Body text.
    variant : Variant
        ``DESTRUCTIVE`` for failures.
    """

    title: str
    description: str
    variant: Variant = Variant.DEFAULT

    @property
    def is_error(self) -> bool:
        """Whether this notification reports a failure."""
        return self.variant is Variant.DESTRUCTIVE


NotificationHandler = Callable[[Notification], None] | Callable[[Notification], Awaitable[None]]


def error_title(exc: BaseException) -> str:
    """Heading for a failed operation, from the classified error."""
    if isinstance(exc, ApiError):
        return exc.title
    return "Error"


class Notifier:
    """Fan-out of notifications to subscribed handlers.

    Handlers may be sync or async. A failing handler is logged and does
    not prevent delivery to the others.
    """

    def __init__(self) -> None:
        """Initialize with no handlers."""
        self._handlers: list[tuple[NotificationHandler, bool]] = []

    def subscribe(self, handler: NotificationHandler) -> Callable[[], None]:
        """Register ``handler``; returns a function that unregisters it."""
        entry = (handler, inspect.iscoroutinefunction(handler))
        self._handlers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return _unsubscribe

    async def notify(self, notification: Notification) -> None:
        """Deliver ``notification`` to every handler."""
        if notification.is_error:
            logger.info("%s: %s", notification.title, notification.description)
        else:
            logger.debug("%s %s", notification.title, notification.description)

        for handler, is_async in list(self._handlers):
            try:
                if is_async:
                    await handler(notification)  # type: ignore[misc]
                else:
                    handler(notification)
            except Exception:
                logger.exception("Notification handler %r failed", handler)

    async def success(self, description: str) -> None:
        """Report a successful operation."""
        await self.notify(Notification("Success!", description))

    async def failure(self, exc: BaseException, fallback: str) -> None:
        """Report a failed operation.

        Parameters
        ----------
        exc : BaseException
            The classified error.
        fallback : str
            Description used when the error carries no message.
        """
        description = getattr(exc, "message", None) or str(exc) or fallback
        await self.notify(Notification(error_title(exc), description, Variant.DESTRUCTIVE))
