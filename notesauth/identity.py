"""Google identity library for Python hosts.

Plays the part the Google Identity Services script plays in a browser:
it is loaded asynchronously, initialized with a client ID and a
callback, and reports a completed sign-in as ``{"credential": <ID token>}``.

Sign-in runs the OAuth2 authorization code flow with PKCE. The user's
browser is sent to Google's authorization endpoint and the redirect is
captured by a short-lived HTTP server bound to the loopback interface.
The ID token from the token endpoint is the raw credential.
"""

# pylint: disable=logging-too-many-args,invalid-name

from __future__ import annotations

import asyncio
import hashlib
import html
import logging
import secrets
import threading
import webbrowser

from base64 import urlsafe_b64encode
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from .exceptions import IdentityProviderError, NotesAuthError


if TYPE_CHECKING:
    from collections.abc import Callable

    from .config import GoogleSettings


logger = logging.getLogger("notesauth.bridge")

DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105

_BUTTON_LABELS = {
    "signin_with": "Sign in with Google",
    "signup_with": "Sign up with Google",
    "continue_with": "Continue with Google",
    "signin": "Sign in",
}


# ── PKCE ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PKCEPair:
    """RFC 7636 code verifier and its S256 challenge."""

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, nbytes: int = 48) -> PKCEPair:
        """Create a fresh verifier/challenge pair."""
        verifier = secrets.token_urlsafe(nbytes)
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return cls(verifier, urlsafe_b64encode(digest).rstrip(b"=").decode("ascii"))


# ── Loopback redirect capture ───────────────────────────────────────

_PAGE = """<!DOCTYPE html>
<html><head><title>{title}</title>
<style>body {{ font-family: sans-serif; text-align: center; margin-top: 20vh; }}</style>
</head><body><h1>{title}</h1><p>{body}</p></body></html>"""


class _RedirectServer(HTTPServer):
    """HTTPServer that keeps the first ``/callback`` query it receives."""

    def __init__(self, host: str, port: int) -> None:
        super().__init__((host, port), _RedirectHandler)
        self.params: dict[str, str] = {}
        self.received = threading.Event()


class _RedirectHandler(BaseHTTPRequestHandler):
    server: _RedirectServer

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != "/callback":
            self.send_error(404)
            return

        if not self.server.received.is_set():
            query = parse_qs(parsed.query)
            self.server.params = {key: values[0] for key, values in query.items() if values}
            self.server.received.set()

        error = self.server.params.get("error")
        if error:
            detail = self.server.params.get("error_description") or error
            page = _PAGE.format(title="Sign-in failed", body=html.escape(detail, quote=True))
        else:
            page = _PAGE.format(title="Signed in", body="You can return to the application.")

        encoded = page.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(encoded)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("Redirect server: %s", format % args)


class LoopbackRedirect:
    """Short-lived HTTP server that captures one OAuth2 redirect.

    Parameters
    ----------
    host : str
        Interface to bind (default ``127.0.0.1``).
    port : int
        Port to bind; ``0`` picks a free one.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self.host = host
        self.port = port
        self._server: _RedirectServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def redirect_uri(self) -> str:
        """The URI to register as the OAuth2 redirect."""
        if self._server is None:
            msg = "Redirect server is not running"
            raise RuntimeError(msg)
        return f"http://{self.host}:{self._server.server_address[1]}/callback"

    def start(self) -> str:
        """Start serving on a daemon thread and return the redirect URI."""
        self._server = _RedirectServer(self.host, self.port)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.debug("Listening for the OAuth2 redirect on %s", self.redirect_uri)
        return self.redirect_uri

    async def wait(self, timeout: float) -> dict[str, str] | None:
        """Wait for the redirect; returns its query parameters or None on timeout."""
        if self._server is None:
            msg = "Redirect server is not running"
            raise RuntimeError(msg)
        received = await asyncio.to_thread(self._server.received.wait, timeout)
        return dict(self._server.params) if received else None

    def stop(self) -> None:
        """Shut the server down."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None


# ── Button mount point ──────────────────────────────────────────────


@dataclass(frozen=True)
class RenderedButton:
    """A sign-in button rendered into a :class:`ButtonMount`."""

    label: str
    options: dict[str, str]
    on_press: Callable[[], None]


class ButtonMount:
    """Mount point a host application shows and lets the user activate."""

    def __init__(self) -> None:
        self.button: RenderedButton | None = None

    def is_empty(self) -> bool:
        """Whether nothing has been rendered yet."""
        return self.button is None

    def attach(self, button: RenderedButton) -> None:
        """Replace the mount point's content with ``button``."""
        self.button = button

    def press(self) -> None:
        """Activate the rendered button, if any."""
        if self.button is not None:
            self.button.on_press()


# ── Library ─────────────────────────────────────────────────────────


class GoogleIdentity:
    """Google sign-in library for the credential bridge.

    Parameters
    ----------
    client_secret : str
        OAuth2 client secret; empty for public clients relying on PKCE.
    scopes : list[str], optional
        Requested scopes (defaults to openid, email, profile).
    auth_timeout : float
        Seconds to wait for the browser redirect (default 120).
    open_browser : callable, optional
        Opens the authorization URL (default ``webbrowser.open``).
    transport : httpx.AsyncBaseTransport, optional
        Custom transport for the discovery and token requests.
    """

    def __init__(
        self,
        client_secret: str = "",
        scopes: list[str] | None = None,
        auth_timeout: float = 120.0,
        open_browser: Callable[[str], Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_secret = client_secret
        self.scopes = scopes or ["openid", "email", "profile"]
        self.auth_timeout = auth_timeout
        self.open_browser = open_browser or webbrowser.open
        self.authorize_url = AUTHORIZE_URL
        self.token_url = TOKEN_URL
        self.client_id = ""
        self.auto_select = False
        self.cancel_on_tap_outside = True

        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._callback: Callable[[dict[str, Any]], None] | None = None
        self._pending: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: GoogleSettings) -> GoogleIdentity:
        """Build the library from the ``google`` settings section."""
        return cls(
            client_secret=settings.client_secret,
            auth_timeout=settings.auth_timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        return self._http_client

    async def close(self) -> None:
        """Cancel a running sign-in and close the HTTP client."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def load(self) -> GoogleIdentity:
        """Fetch Google's OpenID configuration; returns the loaded library.

        The built-in endpoints are kept when discovery fails.
        """
        try:
            client = await self._get_client()
            resp = await client.get(DISCOVERY_URL, timeout=10.0)
            resp.raise_for_status()
            config = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Google discovery failed, using built-in endpoints: %s", exc)
            return self

        self.authorize_url = config.get("authorization_endpoint") or self.authorize_url
        self.token_url = config.get("token_endpoint") or self.token_url
        return self

    # ── IdentityLibrary interface ───────────────────────────────────

    def initialize(
        self,
        *,
        client_id: str,
        callback: Callable[[dict[str, Any]], None],
        auto_select: bool = False,
        cancel_on_tap_outside: bool = True,
    ) -> None:
        """Register the client ID and the credential callback."""
        self.client_id = client_id
        self._callback = callback
        self.auto_select = auto_select
        self.cancel_on_tap_outside = cancel_on_tap_outside

    def prompt(self) -> None:
        """Start a browser sign-in in the background."""
        if self._pending is not None and not self._pending.done():
            logger.debug("Sign-in already in progress")
            return
        self._pending = asyncio.get_running_loop().create_task(self._prompt())

    def render_button(self, mount: ButtonMount, options: dict[str, str]) -> None:
        """Render a sign-in button that starts :meth:`prompt` when pressed."""
        label = _BUTTON_LABELS.get(options.get("text", ""), _BUTTON_LABELS["continue_with"])
        mount.attach(RenderedButton(label=label, options=dict(options), on_press=self.prompt))

    def disable_auto_select(self) -> None:
        """Always ask which account to use on the next sign-in."""
        self.auto_select = False

    async def join(self) -> None:
        """Wait for the background sign-in started by :meth:`prompt`."""
        if self._pending is not None:
            await asyncio.gather(self._pending, return_exceptions=True)

    # ── Flow ────────────────────────────────────────────────────────

    async def _prompt(self) -> None:
        try:
            id_token = await self.sign_in()
        except NotesAuthError as exc:
            logger.warning("Google sign-in did not complete: %s", exc)
            return
        if self._callback is not None:
            self._callback({"credential": id_token})

    def build_authorize_url(self, redirect_uri: str, state: str, nonce: str, pkce: PKCEPair) -> str:
        """Build the authorization URL for one sign-in attempt."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        if not self.auto_select:
            params["prompt"] = "select_account"
        return f"{self.authorize_url}?{urlencode(params)}"

    async def sign_in(self) -> str:
        """Run one browser sign-in and return the Google ID token.

        Raises
        ------
        IdentityProviderError
            If the redirect does not arrive in time, reports an error,
            carries the wrong state, or the token exchange fails.
        """
        if not self.client_id:
            msg = "Library not initialized with a client ID"
            raise IdentityProviderError(msg)

        pkce = PKCEPair.generate()
        state = secrets.token_urlsafe(32)
        nonce = secrets.token_urlsafe(16)

        server = LoopbackRedirect()
        redirect_uri = server.start()
        try:
            self.open_browser(self.build_authorize_url(redirect_uri, state, nonce, pkce))
            params = await server.wait(self.auth_timeout)
        finally:
            server.stop()

        if params is None:
            msg = f"No redirect received within {self.auth_timeout}s"
            raise IdentityProviderError(msg)
        if params.get("error"):
            msg = params.get("error_description") or params["error"]
            raise IdentityProviderError(msg, error=params["error"])
        if not secrets.compare_digest(params.get("state", ""), state):
            msg = "Redirect state does not match the request"
            raise IdentityProviderError(msg)
        if not params.get("code"):
            msg = "Redirect carried no authorization code"
            raise IdentityProviderError(msg)

        return await self.exchange_code(params["code"], redirect_uri, pkce.verifier)

    async def exchange_code(self, code: str, redirect_uri: str, verifier: str) -> str:
        """Exchange an authorization code for the ID token.

        Raises
        ------
        IdentityProviderError
            If the token endpoint fails or returns no ID token.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "code_verifier": verifier,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            client = await self._get_client()
            resp = await client.post(self.token_url, data=data)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Token exchange failed: {exc.response.status_code}"
            raise IdentityProviderError(msg, url=self.token_url) from exc
        except (httpx.HTTPError, ValueError) as exc:
            msg = f"Token exchange request failed: {exc}"
            raise IdentityProviderError(msg, url=self.token_url) from exc

        id_token = payload.get("id_token") if isinstance(payload, dict) else None
        if not id_token:
            msg = "Token response carried no ID token"
            raise IdentityProviderError(msg, url=self.token_url)
        return str(id_token)
