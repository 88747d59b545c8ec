"""notesauth exception hierarchy.

All notesauth-specific exceptions inherit from NotesAuthError, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class NotesAuthError(Exception):
    """Base exception for all notesauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize notesauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (status, url, email, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ApiError(NotesAuthError):
    """API Gateway call failed.

    Raised once at the HTTP boundary and re-raised unchanged by the
    auth controller. ``title`` is the heading shown to the user.
    """

    title = "Error"

    def __init__(
        self,
        message: str,
        status: int | None = None,
        url: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize API error.

        Parameters
        ----------
        message : str
            Human-readable error message (usually taken from the response body).
        status : int, optional
            The HTTP status code, if a response was received.
        url : str, optional
            The request URL.
        **context : Any
            Additional context.
        """
        super().__init__(message, status=status, url=url, **context)
        self.status = status
        self.url = url


class NotFoundError(ApiError):
    """The API returned HTTP 404."""

    title = "Not Found"


class ServerError(ApiError):
    """The API returned an HTTP 5xx status."""

    title = "Server Error"


class RequestError(ApiError):
    """The API rejected the request with a 4xx status other than 404."""

    title = "Request Error"


class NetworkError(ApiError):
    """The request never produced a response (DNS, connect, timeout)."""


class CredentialDecodeError(NotesAuthError):
    """A federated credential could not be structurally decoded.

    Non-fatal: the raw credential is still forwarded for sign-in.
    """


class BridgeNotReadyError(NotesAuthError):
    """The identity-provider library did not become available in time."""

    def __init__(self, message: str, timeout: float | None = None, **context: Any) -> None:
        """Initialize readiness error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float, optional
            The readiness timeout in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, timeout=timeout, **context)
        self.timeout = timeout


class AuthStateError(NotesAuthError):
    """An auth operation was invoked from a state that does not allow it."""

    def __init__(self, message: str, operation: str, state: str, **context: Any) -> None:
        """Initialize state error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        operation : str
            The controller operation that was rejected.
        state : str
            The name of the current authentication state.
        **context : Any
            Additional context.
        """
        super().__init__(message, operation=operation, state=state, **context)
        self.operation = operation
        self.state = state


class StaleResponseError(NotesAuthError):
    """A response arrived for a request that a newer one superseded.

    The response is discarded and the authentication state is unchanged.
    """

    def __init__(self, message: str, email: str, purpose: str, **context: Any) -> None:
        """Initialize stale response error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        email : str
            The email address of the superseded challenge.
        purpose : str
            The challenge purpose ("signup" or "signin").
        **context : Any
            Additional context.
        """
        super().__init__(message, email=email, purpose=purpose, **context)
        self.email = email
        self.purpose = purpose


class IdentityProviderError(NotesAuthError):
    """The identity provider's authorization or token endpoint failed."""
