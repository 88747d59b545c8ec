"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import itertools
import logging

from typing import TYPE_CHECKING, Any

import pytest

from notesauth.challenges import ChallengeTracker
from notesauth.controller import AuthController
from notesauth.exceptions import ApiError, NotFoundError, RequestError
from notesauth.log import PACKAGE_LOGGER, get_logger
from notesauth.models import AuthResponse, OtpPurpose, OtpResponse, User
from notesauth.notifications import Notification, Notifier
from notesauth.session import SessionStore
from notesauth.storage import MemoryStorage


if TYPE_CHECKING:
    from collections.abc import Iterator


START = 1_700_000_000.0


class FakeClock:
    """Settable replacement for ``time.time``."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """In-memory stand-in for the notes backend's auth API.

    Keeps the latest OTP per ``(email, purpose)`` the way the server does:
    a new request replaces the previous code. ``fail`` maps a method name
    to an exception raised on its next call. ``gates`` maps a method name
    to an asyncio.Event the call waits on before answering.
    """

    def __init__(self) -> None:
        self._codes = (f"{n:06d}" for n in itertools.count(100001))
        self.otps: dict[tuple[str, OtpPurpose], str] = {}
        self.accounts: dict[str, User] = {}
        self.pending_signups: dict[str, tuple[str, str]] = {}
        self.tokens: dict[str, User] = {}
        self.token_counter = itertools.count(1)
        self.fail: dict[str, ApiError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.google_users: dict[str, User] = {}
        self.me_token: str | None = None

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.fail.pop(name, None)
        if error is not None:
            raise error

    def _issue_token(self, user: User) -> str:
        token = f"token-{next(self.token_counter)}"
        self.tokens[token] = user
        return token

    def add_account(self, email: str, name: str = "Alice") -> User:
        user = User(_id=f"id-{len(self.accounts) + 1}", name=name, email=email, dob="1990-01-01")
        self.accounts[email] = user
        return user

    async def signup(self, email: str, name: str, dob: str) -> OtpResponse:
        await self._enter("signup", email, name, dob)
        if email in self.accounts:
            msg = "User already exists"
            raise RequestError(msg, status=400)
        code = next(self._codes)
        self.otps[(email, OtpPurpose.SIGNUP)] = code
        self.pending_signups[email] = (name, dob)
        return OtpResponse(message="OTP sent", email=email, otp=code)

    async def verify_otp(self, email: str, otp: str) -> AuthResponse:
        await self._enter("verify_otp", email, otp)
        if self.otps.get((email, OtpPurpose.SIGNUP)) != otp:
            msg = "Invalid or expired OTP"
            raise RequestError(msg, status=400)
        del self.otps[(email, OtpPurpose.SIGNUP)]
        name, dob = self.pending_signups.pop(email)
        user = User(_id=f"id-{len(self.accounts) + 1}", name=name, email=email, dob=dob)
        self.accounts[email] = user
        return AuthResponse(user=user, token=self._issue_token(user), message="Verified")

    async def signin(self, email: str) -> OtpResponse:
        await self._enter("signin", email)
        if email not in self.accounts:
            msg = "User not found"
            raise NotFoundError(msg, status=404)
        code = next(self._codes)
        self.otps[(email, OtpPurpose.SIGNIN)] = code
        return OtpResponse(message="OTP sent", email=email, otp=code)

    async def verify_signin_otp(self, email: str, otp: str) -> AuthResponse:
        await self._enter("verify_signin_otp", email, otp)
        if self.otps.get((email, OtpPurpose.SIGNIN)) != otp:
            msg = "Invalid or expired OTP"
            raise RequestError(msg, status=400)
        del self.otps[(email, OtpPurpose.SIGNIN)]
        user = self.accounts[email]
        return AuthResponse(user=user, token=self._issue_token(user), message="Signed in")

    async def google_auth(self, credential: str) -> AuthResponse:
        await self._enter("google_auth", credential)
        user = self.google_users.get(credential)
        if user is None:
            msg = "Invalid Google token"
            raise RequestError(msg, status=401)
        return AuthResponse(user=user, token=self._issue_token(user), message="Signed in")

    async def current_user(self) -> User:
        await self._enter("current_user")
        user = self.tokens.get(self.me_token or "")
        if user is None:
            msg = "Invalid token"
            raise RequestError(msg, status=401)
        return user

    async def logout(self) -> dict[str, Any]:
        await self._enter("logout")
        return {"message": "Logged out"}

    def called(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def fresh_package_logger() -> Iterator[None]:
    """Drop the package handler after each test.

    The handler binds the ``sys.stderr`` of the test that first created it,
    which capsys closes when that test ends.
    """
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    get_logger.cache_clear()


@pytest.fixture()
def clock() -> FakeClock:
    """A clock frozen at a fixed instant."""
    return FakeClock()


@pytest.fixture()
def ephemeral() -> MemoryStorage:
    """Storage area for the ephemeral tier."""
    return MemoryStorage("ephemeral")


@pytest.fixture()
def persistent() -> MemoryStorage:
    """Storage area for the persistent tier."""
    return MemoryStorage("persistent")


@pytest.fixture()
def session_store(
    ephemeral: MemoryStorage, persistent: MemoryStorage, clock: FakeClock
) -> SessionStore:
    """Session store over two memory areas and the fake clock."""
    return SessionStore(ephemeral=ephemeral, persistent=persistent, clock=clock)


@pytest.fixture()
def user() -> User:
    """A sample user."""
    return User(
        _id="64b7f0c2",
        name="Alice",
        email="alice@example.com",
        dob="1990-01-01",
        createdAt="2024-01-01T00:00:00.000Z",
    )


@pytest.fixture()
def gateway() -> FakeGateway:
    """Fake backend."""
    return FakeGateway()


@pytest.fixture()
def notifications() -> list[Notification]:
    """Notifications delivered during the test."""
    return []


@pytest.fixture()
def notifier(notifications: list[Notification]) -> Notifier:
    """Notifier that records into ``notifications``."""
    n = Notifier()
    n.subscribe(notifications.append)
    return n


@pytest.fixture()
def controller(
    gateway: FakeGateway, session_store: SessionStore, notifier: Notifier
) -> AuthController:
    """Auth controller wired to the fake backend."""
    return AuthController(gateway, session_store, notifier, ChallengeTracker())  # type: ignore[arg-type]
