"""HTTP client for the notes backend's auth endpoints.

Every failure is classified exactly once here, into the ApiError
subclasses, and re-raised to the caller unchanged.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

import httpx

from .exceptions import ApiError, NetworkError, NotFoundError, RequestError, ServerError
from .log import redact_sensitive_data
from .models import AuthResponse, OtpResponse, User


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import ApiSettings


logger = logging.getLogger("notesauth.api")


def classify_status(status: int) -> type[ApiError]:
    """Map an HTTP error status to its ApiError subclass."""
    if status == 404:
        return NotFoundError
    if status >= 500:
        return ServerError
    if status >= 400:
        return RequestError
    return ApiError


def _error_message(response: httpx.Response) -> str:
    """Extract the backend's error message, falling back to the status line."""
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for field in ("message", "error", "details"):
            if body.get(field):
                return str(body[field])
    return fallback


class ApiGateway:
    """Async client for the ``/api/auth`` endpoints.

    Parameters
    ----------
    base_url : str
        Backend base URL (e.g. ``http://localhost:3000``).
    token_provider : callable, optional
        Coroutine function returning the current bearer token or None.
        Called before every request.
    timeout : float
        Request timeout in seconds (default 30).
    transport : httpx.AsyncBaseTransport, optional
        Custom transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Awaitable[str | None]] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the gateway."""
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: ApiSettings,
        token_provider: Callable[[], Awaitable[str | None]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ApiGateway:
        """Build a gateway from the ``api`` settings section."""
        return cls(
            settings.base_url,
            token_provider=token_provider,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises
        ------
        NotFoundError, ServerError, RequestError
            For HTTP error statuses.
        NetworkError
            When no response was received.
        """
        headers = {"Content-Type": "application/json"}
        if self.token_provider is not None:
            token = await self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        url = f"{self.base_url}{path}"
        logger.debug("%s %s %s", method, path, redact_sensitive_data(json_body))

        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json_body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            msg = f"Could not reach the server: {exc}"
            raise NetworkError(msg, url=url) from exc

        if response.is_error:
            error_cls = classify_status(response.status_code)
            message = _error_message(response)
            logger.warning("%s %s returned %s: %s", method, path, response.status_code, message)
            raise error_cls(message, status=response.status_code, url=url)

        try:
            return response.json()
        except ValueError as exc:
            msg = "Server returned a response that is not JSON"
            raise ApiError(msg, status=response.status_code, url=url) from exc

    async def health(self) -> dict[str, Any]:
        """``GET /api/health``."""
        return await self._request("GET", "/api/health")  # type: ignore[no-any-return]

    async def signup(self, email: str, name: str, dob: str) -> OtpResponse:
        """``POST /api/auth/signup``: request a sign-up OTP."""
        data = await self._request(
            "POST", "/api/auth/signup", {"email": email, "name": name, "dob": dob}
        )
        return self._parse(OtpResponse, data, "/api/auth/signup")

    async def verify_otp(self, email: str, otp: str) -> AuthResponse:
        """``POST /api/auth/verify-otp``: confirm a sign-up OTP."""
        data = await self._request("POST", "/api/auth/verify-otp", {"email": email, "otp": otp})
        return self._parse(AuthResponse, data, "/api/auth/verify-otp")

    async def signin(self, email: str) -> OtpResponse:
        """``POST /api/auth/signin``: request a sign-in OTP."""
        data = await self._request("POST", "/api/auth/signin", {"email": email})
        return self._parse(OtpResponse, data, "/api/auth/signin")

    async def verify_signin_otp(self, email: str, otp: str) -> AuthResponse:
        """``POST /api/auth/verify-signin-otp``: confirm a sign-in OTP."""
        data = await self._request(
            "POST", "/api/auth/verify-signin-otp", {"email": email, "otp": otp}
        )
        return self._parse(AuthResponse, data, "/api/auth/verify-signin-otp")

    async def current_user(self) -> User:
        """``GET /api/auth/me``: fetch the user the bearer token belongs to."""
        data = await self._request("GET", "/api/auth/me")
        return self._parse(User, data, "/api/auth/me")

    async def logout(self) -> dict[str, Any]:
        """``POST /api/auth/logout``: invalidate the server-side session."""
        return await self._request("POST", "/api/auth/logout")  # type: ignore[no-any-return]

    async def google_auth(self, credential: str) -> AuthResponse:
        """``POST /api/auth/google``: exchange a Google credential for a session."""
        data = await self._request("POST", "/api/auth/google", {"token": credential})
        return self._parse(AuthResponse, data, "/api/auth/google")

    def _parse(self, model: Any, data: Any, path: str) -> Any:
        try:
            return model.model_validate(data)
        except ValueError as exc:
            msg = f"Unexpected response shape from {path}"
            raise ApiError(msg, url=f"{self.base_url}{path}") from exc
