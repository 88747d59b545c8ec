"""Tests for the loopback Google identity library."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import hashlib
import urllib.error
import urllib.request

from base64 import urlsafe_b64encode
from typing import Any
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from notesauth.config import GoogleSettings
from notesauth.exceptions import IdentityProviderError
from notesauth.identity import (
    AUTHORIZE_URL,
    DISCOVERY_URL,
    TOKEN_URL,
    ButtonMount,
    GoogleIdentity,
    LoopbackRedirect,
    PKCEPair,
)


def fetch(url: str) -> int:
    """GET ``url`` directly (no proxies) and return the status code."""
    opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
    try:
        with opener.open(url, timeout=5) as resp:
            return resp.status
    except urllib.error.HTTPError as exc:
        return exc.code


def query_of(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TokenEndpoint:
    """MockTransport handler for the discovery and token endpoints."""

    def __init__(self, status: int = 200, body: Any = None) -> None:
        self.status = status
        self.body = {"id_token": "google-id-token"} if body is None else body
        self.forms: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == DISCOVERY_URL:
            return httpx.Response(
                200,
                json={
                    "authorization_endpoint": "https://auth.test/authorize",
                    "token_endpoint": "https://auth.test/token",
                },
            )
        self.forms.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        return httpx.Response(self.status, json=self.body)


@pytest.fixture()
def endpoint() -> TokenEndpoint:
    """Fake Google token endpoint."""
    return TokenEndpoint()


@pytest.fixture()
def identity(endpoint: TokenEndpoint) -> GoogleIdentity:
    """Library initialized with a client ID, recording credentials."""
    lib = GoogleIdentity(auth_timeout=5.0, transport=httpx.MockTransport(endpoint))
    lib.received = []  # type: ignore[attr-defined]
    lib.initialize(client_id="client-1.apps.test", callback=lib.received.append)  # type: ignore[attr-defined]
    return lib


def redirect_with(**extra: str):
    """Browser stand-in that follows the authorization URL's redirect."""

    def open_browser(url: str) -> None:
        params = query_of(url)
        query = {"state": params["state"], **extra}
        fetch(f"{params['redirect_uri']}?{urlencode(query)}")

    return open_browser


# ── PKCE ────────────────────────────────────────────────────────────


class TestPKCE:
    """PKCEPair.generate()."""

    def test_s256_challenge(self) -> None:
        """The challenge is the unpadded base64url SHA-256 of the verifier."""
        pair = PKCEPair.generate()
        digest = hashlib.sha256(pair.verifier.encode("ascii")).digest()
        assert pair.challenge == urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert pair.method == "S256"
        assert 43 <= len(pair.verifier) <= 128

    def test_unique(self) -> None:
        """Each pair is fresh."""
        assert PKCEPair.generate().verifier != PKCEPair.generate().verifier


# ── Authorization URL ───────────────────────────────────────────────


class TestAuthorizeUrl:
    """build_authorize_url()."""

    def test_parameters(self, identity: GoogleIdentity) -> None:
        """The URL carries the code flow, PKCE and account chooser parameters."""
        pkce = PKCEPair.generate()
        url = identity.build_authorize_url("http://127.0.0.1:5000/callback", "st", "nc", pkce)
        assert url.startswith(AUTHORIZE_URL + "?")
        params = query_of(url)
        assert params["response_type"] == "code"
        assert params["client_id"] == "client-1.apps.test"
        assert params["scope"] == "openid email profile"
        assert params["state"] == "st"
        assert params["nonce"] == "nc"
        assert params["code_challenge"] == pkce.challenge
        assert params["code_challenge_method"] == "S256"
        assert params["prompt"] == "select_account"

    def test_auto_select_skips_chooser(self, identity: GoogleIdentity) -> None:
        """With auto-select the account chooser is not forced."""
        identity.auto_select = True
        url = identity.build_authorize_url("http://x/callback", "s", "n", PKCEPair.generate())
        assert "prompt" not in query_of(url)

        identity.disable_auto_select()
        url = identity.build_authorize_url("http://x/callback", "s", "n", PKCEPair.generate())
        assert query_of(url)["prompt"] == "select_account"


# ── Discovery and token exchange ────────────────────────────────────


class TestEndpoints:
    """load() and exchange_code()."""

    @pytest.mark.asyncio
    async def test_discovery(self, identity: GoogleIdentity) -> None:
        """Discovered endpoints replace the built-in ones."""
        assert await identity.load() is identity
        assert identity.authorize_url == "https://auth.test/authorize"
        assert identity.token_url == "https://auth.test/token"
        await identity.close()

    @pytest.mark.asyncio
    async def test_discovery_failure_keeps_defaults(self) -> None:
        """A failed discovery keeps the built-in endpoints."""
        lib = GoogleIdentity(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        )
        assert await lib.load() is lib
        assert lib.authorize_url == AUTHORIZE_URL
        assert lib.token_url == TOKEN_URL
        await lib.close()

    @pytest.mark.asyncio
    async def test_exchange_code(self, identity: GoogleIdentity, endpoint: TokenEndpoint) -> None:
        """The code and verifier are posted as a form; the ID token comes back."""
        token = await identity.exchange_code("auth-code", "http://127.0.0.1:1/callback", "ver")
        assert token == "google-id-token"
        assert endpoint.forms[-1] == {
            "grant_type": "authorization_code",
            "code": "auth-code",
            "redirect_uri": "http://127.0.0.1:1/callback",
            "client_id": "client-1.apps.test",
            "code_verifier": "ver",
        }
        await identity.close()

    @pytest.mark.asyncio
    async def test_exchange_sends_secret(
        self, identity: GoogleIdentity, endpoint: TokenEndpoint
    ) -> None:
        """A confidential client also sends its secret."""
        identity.client_secret = "shh"
        await identity.exchange_code("c", "http://x/callback", "v")
        assert endpoint.forms[-1]["client_secret"] == "shh"
        await identity.close()

    @pytest.mark.asyncio
    async def test_exchange_http_error(self, identity: GoogleIdentity, endpoint: TokenEndpoint) -> None:
        """A failing token endpoint raises IdentityProviderError."""
        endpoint.status = 400
        endpoint.body = {"error": "invalid_grant"}
        with pytest.raises(IdentityProviderError, match="Token exchange failed: 400"):
            await identity.exchange_code("c", "http://x/callback", "v")
        await identity.close()

    @pytest.mark.asyncio
    async def test_exchange_without_id_token(
        self, identity: GoogleIdentity, endpoint: TokenEndpoint
    ) -> None:
        """A token response without an ID token is an error."""
        endpoint.body = {"access_token": "a"}
        with pytest.raises(IdentityProviderError, match="no ID token"):
            await identity.exchange_code("c", "http://x/callback", "v")
        await identity.close()


# ── Loopback sign-in ────────────────────────────────────────────────


class TestSignIn:
    """sign_in() through the loopback redirect server."""

    @pytest.mark.asyncio
    async def test_success(self, identity: GoogleIdentity, endpoint: TokenEndpoint) -> None:
        """The redirected code is exchanged for the ID token."""
        identity.open_browser = redirect_with(code="auth-code")
        assert await identity.sign_in() == "google-id-token"
        form = endpoint.forms[-1]
        assert form["code"] == "auth-code"
        assert form["redirect_uri"].startswith("http://127.0.0.1:")
        assert form["redirect_uri"].endswith("/callback")
        await identity.close()

    @pytest.mark.asyncio
    async def test_provider_error(self, identity: GoogleIdentity) -> None:
        """An error in the redirect is raised with its description."""
        identity.open_browser = redirect_with(
            error="access_denied", error_description="User cancelled"
        )
        with pytest.raises(IdentityProviderError, match="User cancelled"):
            await identity.sign_in()

    @pytest.mark.asyncio
    async def test_state_mismatch(self, identity: GoogleIdentity) -> None:
        """A redirect carrying another state is rejected."""

        def forged(url: str) -> None:
            params = query_of(url)
            fetch(f"{params['redirect_uri']}?code=c&state=forged")

        identity.open_browser = forged
        with pytest.raises(IdentityProviderError, match="state"):
            await identity.sign_in()

    @pytest.mark.asyncio
    async def test_missing_code(self, identity: GoogleIdentity) -> None:
        """A redirect without a code is rejected."""
        identity.open_browser = redirect_with()
        with pytest.raises(IdentityProviderError, match="no authorization code"):
            await identity.sign_in()

    @pytest.mark.asyncio
    async def test_timeout(self, identity: GoogleIdentity) -> None:
        """No redirect within the timeout raises."""
        identity.auth_timeout = 0.05
        identity.open_browser = lambda url: None
        with pytest.raises(IdentityProviderError, match="No redirect received"):
            await identity.sign_in()

    @pytest.mark.asyncio
    async def test_requires_client_id(self) -> None:
        """sign_in() before initialize() raises."""
        with pytest.raises(IdentityProviderError, match="client ID"):
            await GoogleIdentity().sign_in()


class TestLoopbackRedirect:
    """LoopbackRedirect server."""

    def test_redirect_uri_requires_start(self) -> None:
        """The URI is only known once the server is bound."""
        with pytest.raises(RuntimeError):
            _ = LoopbackRedirect().redirect_uri

    @pytest.mark.asyncio
    async def test_unknown_path_is_404(self) -> None:
        """Only /callback is served."""
        server = LoopbackRedirect()
        uri = server.start()
        try:
            assert fetch(uri.replace("/callback", "/other")) == 404
            assert await server.wait(0.01) is None
            assert fetch(f"{uri}?code=x&state=y") == 200
            assert await server.wait(1.0) == {"code": "x", "state": "y"}
        finally:
            server.stop()


# ── Library interface ───────────────────────────────────────────────


class TestLibraryInterface:
    """prompt(), render_button() and the credential callback."""

    @pytest.mark.asyncio
    async def test_prompt_delivers_credential(self, identity: GoogleIdentity) -> None:
        """A completed sign-in is reported through the callback."""
        identity.sign_in = AsyncMock(return_value="google-id-token")  # type: ignore[method-assign]
        identity.prompt()
        await identity.join()
        assert identity.received == [{"credential": "google-id-token"}]  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_prompt_failure_not_reported(self, identity: GoogleIdentity) -> None:
        """A failed sign-in does not call back."""
        identity.sign_in = AsyncMock(side_effect=IdentityProviderError("cancelled"))  # type: ignore[method-assign]
        identity.prompt()
        await identity.join()
        assert identity.received == []  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_single_sign_in_at_a_time(self, identity: GoogleIdentity) -> None:
        """A second prompt while one is running is ignored."""
        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "tok"

        identity.sign_in = AsyncMock(side_effect=slow)  # type: ignore[method-assign]
        identity.prompt()
        identity.prompt()
        await asyncio.sleep(0)
        release.set()
        await identity.join()
        assert identity.sign_in.await_count == 1

    @pytest.mark.asyncio
    async def test_render_button_and_press(self, identity: GoogleIdentity) -> None:
        """The rendered button starts a sign-in when pressed."""
        identity.sign_in = AsyncMock(return_value="google-id-token")  # type: ignore[method-assign]
        mount = ButtonMount()
        assert mount.is_empty()

        identity.render_button(mount, {"text": "signin_with", "theme": "outline"})
        assert not mount.is_empty()
        assert mount.button is not None
        assert mount.button.label == "Sign in with Google"
        assert mount.button.options["theme"] == "outline"

        mount.press()
        await identity.join()
        assert identity.received == [{"credential": "google-id-token"}]  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self, identity: GoogleIdentity) -> None:
        """close() cancels a sign-in that is still waiting."""
        never = asyncio.Event()

        async def hang() -> str:
            await never.wait()
            return "tok"

        identity.sign_in = AsyncMock(side_effect=hang)  # type: ignore[method-assign]
        identity.prompt()
        await asyncio.sleep(0)
        await identity.close()
        await identity.join()
        assert identity.received == []  # type: ignore[attr-defined]

    def test_from_settings(self) -> None:
        """from_settings takes the secret and redirect timeout."""
        lib = GoogleIdentity.from_settings(
            GoogleSettings(client_secret="s", auth_timeout_seconds=30)
        )
        assert lib.client_secret == "s"
        assert lib.auth_timeout == 30
