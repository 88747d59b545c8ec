"""Bridge between an identity-provider library and the auth controller.

The provider library (Google Identity Services or the loopback
implementation in :mod:`notesauth.identity`) reports a completed sign-in
through a callback carrying ``{"credential": <raw credential>}``. The
bridge turns that into a single ``handle_credential`` call, whichever
strategy offered the sign-in:

- **prompt**: the library shows its own transient prompt.
- **button**: the library renders a button into a mount point.

The library loads asynchronously; :class:`ProviderReadiness` resolves
exactly once when it becomes available, and the bridge waits for it with
a bounded timeout.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import jwt

from .exceptions import BridgeNotReadyError, CredentialDecodeError, NotesAuthError
from .log import redact_sensitive_data


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import GoogleSettings
    from .controller import AuthController
    from .models import User
    from .session import SessionStore


logger = logging.getLogger("notesauth.bridge")


# ── Provider library contract ───────────────────────────────────────


@runtime_checkable
class MountPoint(Protocol):
    """A UI container the provider library can render a button into."""

    def is_empty(self) -> bool: ...


@runtime_checkable
class IdentityLibrary(Protocol):
    """The subset of an identity-provider library the bridge drives."""

    def initialize(
        self,
        *,
        client_id: str,
        callback: Callable[[dict[str, Any]], None],
        auto_select: bool = False,
        cancel_on_tap_outside: bool = True,
    ) -> None: ...

    def prompt(self) -> None: ...

    def render_button(self, mount: MountPoint, options: dict[str, str]) -> None: ...

    def disable_auto_select(self) -> None: ...


def decode_credential(credential: str) -> dict[str, Any]:
    """Decode the claims of a JWT credential without verifying it.

    For diagnostics only; the backend performs the real validation.

    Raises
    ------
    CredentialDecodeError
        If the credential is not a structurally valid JWT.
    """
    try:
        claims = jwt.decode(credential, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        msg = f"Malformed credential: {exc}"
        raise CredentialDecodeError(msg) from exc
    return dict(claims)


# ── Readiness ───────────────────────────────────────────────────────


class ProviderReadiness:
    """Resolves once, when the identity-provider library is available.

    ``mark_ready`` / ``mark_failed`` may be called before anyone waits;
    only the first call has an effect.
    """

    def __init__(self) -> None:
        """Initialize an unresolved readiness signal."""
        self._future: asyncio.Future[IdentityLibrary] | None = None
        self._settled = False
        self._library: IdentityLibrary | None = None
        self._error: BaseException | None = None

    @property
    def is_ready(self) -> bool:
        """Whether the library loaded successfully."""
        return self._settled and self._error is None

    @property
    def is_settled(self) -> bool:
        """Whether the library loaded or failed to load."""
        return self._settled

    def _get_future(self) -> asyncio.Future[IdentityLibrary]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self._error is not None:
                self._future.set_exception(self._error)
            elif self._settled:
                self._future.set_result(self._library)  # type: ignore[arg-type]
        return self._future

    def mark_ready(self, library: IdentityLibrary) -> None:
        """Signal that ``library`` has loaded."""
        if self._settled:
            return
        self._settled = True
        self._library = library
        if self._future is not None and not self._future.done():
            self._future.set_result(library)
        logger.debug("Identity library ready: %s", type(library).__name__)

    def mark_failed(self, error: BaseException) -> None:
        """Signal that the library will not load."""
        if self._settled:
            return
        self._settled = True
        self._error = error
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)
        logger.warning("Identity library failed to load: %s", error)

    async def load(self, loader: Callable[[], Awaitable[IdentityLibrary]]) -> None:
        """Run ``loader`` and settle with its outcome."""
        try:
            library = await loader()
        except Exception as exc:
            self.mark_failed(exc)
            return
        self.mark_ready(library)

    async def wait(self, timeout: float) -> IdentityLibrary:
        """Wait for the library.

        Raises
        ------
        BridgeNotReadyError
            If the library failed to load or did not load within ``timeout``.
        """
        future = self._get_future()
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError as exc:
            msg = f"Identity provider not available after {timeout}s"
            raise BridgeNotReadyError(msg, timeout=timeout) from exc
        except Exception as exc:
            msg = f"Identity provider failed to load: {exc}"
            raise BridgeNotReadyError(msg, timeout=timeout) from exc


# ── Strategies ──────────────────────────────────────────────────────


class SignInStrategy(ABC):
    """How the provider's sign-in is offered to the user."""

    name: str = ""

    @abstractmethod
    async def activate(self, library: IdentityLibrary) -> None:
        """Offer the sign-in using the initialized ``library``."""


class PromptStrategy(SignInStrategy):
    """Ask the provider to show its own transient prompt."""

    name = "prompt"

    async def activate(self, library: IdentityLibrary) -> None:
        library.prompt()


class ButtonStrategy(SignInStrategy):
    """Render the provider's button into ``mount``.

    If the mount point is still empty after ``grace_period`` seconds the
    button is rendered once more; after that the strategy gives up
    without raising.

    Parameters
    ----------
    mount : MountPoint
        Container to render into.
    options : dict, optional
        Button options (theme, size, text, shape, width).
    grace_period : float
        Seconds to wait before checking the mount point (default 0.5).
    """

    name = "button"

    def __init__(
        self,
        mount: MountPoint,
        options: dict[str, str] | None = None,
        grace_period: float = 0.5,
    ) -> None:
        self.mount = mount
        self.options = options or {}
        self.grace_period = grace_period
        self.render_attempts = 0

    async def activate(self, library: IdentityLibrary) -> None:
        self.render_attempts = 1
        library.render_button(self.mount, self.options)

        await asyncio.sleep(self.grace_period)
        if not self.mount.is_empty():
            return

        logger.debug("Sign-in button not rendered, retrying")
        self.render_attempts = 2
        library.render_button(self.mount, self.options)
        if self.mount.is_empty():
            logger.debug("Sign-in button still not rendered; leaving mount point empty")


def create_strategy(settings: GoogleSettings, mount: MountPoint | None = None) -> SignInStrategy:
    """Build the strategy selected by ``google.strategy``.

    Raises
    ------
    ValueError
        If the button strategy is selected without a mount point.
    """
    if settings.strategy == "button":
        if mount is None:
            msg = "The button strategy requires a mount point"
            raise ValueError(msg)
        return ButtonStrategy(
            mount,
            options=settings.button_options(),
            grace_period=settings.render_grace_seconds,
        )
    return PromptStrategy()


# ── Bridge ──────────────────────────────────────────────────────────


class BridgeState(str, Enum):
    """Lifecycle of the credential bridge."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    NOT_READY = "not_ready"


class CredentialBridge:
    """Feeds federated credentials from the provider library to the controller.

    Parameters
    ----------
    controller : AuthController
        Receives ``federated_sign_in`` calls.
    readiness : ProviderReadiness
        Resolves with the provider library.
    strategy : SignInStrategy
        How the sign-in is offered once the library is ready.
    client_id : str
        OAuth2 client ID passed to the library.
    session_store : SessionStore, optional
        Where the raw credential is cached while sign-in is in flight
        (defaults to the controller's store).
    ready_timeout : float
        Seconds to wait for the library (default 10).
    on_success : callable, optional
        Called with the signed-in user.
    on_error : callable, optional
        Called with the error when sign-in fails.
    """

    def __init__(
        self,
        controller: AuthController,
        readiness: ProviderReadiness,
        strategy: SignInStrategy,
        client_id: str,
        session_store: SessionStore | None = None,
        ready_timeout: float = 10.0,
        on_success: Callable[[User], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        """Initialize the bridge in the IDLE state."""
        self.controller = controller
        self.readiness = readiness
        self.strategy = strategy
        self.client_id = client_id
        self.session_store = session_store or controller.session_store
        self.ready_timeout = ready_timeout
        self.on_success = on_success
        self.on_error = on_error

        self._state = BridgeState.IDLE
        self._library: IdentityLibrary | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._busy = False

    @property
    def state(self) -> BridgeState:
        """Current bridge lifecycle state."""
        return self._state

    @property
    def is_initializing(self) -> bool:
        """True while waiting for the provider library."""
        return self._state is BridgeState.INITIALIZING

    @property
    def is_busy(self) -> bool:
        """True while a federated sign-in is in flight."""
        return self._busy

    async def initialize(self, timeout: float | None = None) -> None:
        """Wait for the provider library, register the callback and offer sign-in.

        Raises
        ------
        BridgeNotReadyError
            If no client ID is configured, the library is not available
            within ``timeout`` (default ``ready_timeout``), or its own
            ``initialize`` fails.
        """
        if not self.client_id:
            self._state = BridgeState.NOT_READY
            msg = "Google client ID not configured"
            raise BridgeNotReadyError(msg)

        self._loop = asyncio.get_running_loop()
        self._state = BridgeState.INITIALIZING
        try:
            library = await self.readiness.wait(timeout or self.ready_timeout)
        except BridgeNotReadyError:
            self._state = BridgeState.NOT_READY
            raise

        try:
            library.initialize(
                client_id=self.client_id,
                callback=self._on_provider_response,
                auto_select=False,
                cancel_on_tap_outside=True,
            )
        except Exception as exc:
            self._state = BridgeState.NOT_READY
            msg = f"Google identity library failed to initialize: {exc}"
            raise BridgeNotReadyError(msg) from exc
        self._library = library
        self._state = BridgeState.READY
        logger.debug("Credential bridge ready (%s strategy)", self.strategy.name)
        await self.strategy.activate(library)

    def _on_provider_response(self, response: dict[str, Any]) -> None:
        """Library callback; may run on the loop or on a library thread."""
        credential = response.get("credential")
        if not credential:
            logger.warning("Provider response carried no credential")
            return

        loop = self._loop
        if loop is None:
            logger.warning("Provider response received before the bridge was initialized")
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._spawn(credential)
        else:
            loop.call_soon_threadsafe(self._spawn, credential)

    def _spawn(self, credential: str) -> None:
        if self._loop is None:
            logger.warning("Provider response received before the bridge was initialized")
            return
        task = self._loop.create_task(self._handle_from_provider(credential))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_from_provider(self, credential: str) -> None:
        try:
            await self.handle_credential(credential)
        except NotesAuthError as exc:
            logger.debug("Provider-initiated sign-in ended with %s", type(exc).__name__)

    async def drain(self) -> None:
        """Wait for provider-initiated sign-ins that are still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def handle_credential(self, credential: str) -> User:
        """Sign in with a raw federated credential.

        The credential is cached while the attempt is in flight and
        discarded when it settles, on success and on failure. A credential
        that cannot be decoded is still forwarded unchanged.

        Raises
        ------
        NotesAuthError
            Whatever ``federated_sign_in`` raised, after ``on_error`` ran.
        """
        self._busy = True
        await self.session_store.cache_credential(credential)

        try:
            claims = decode_credential(credential)
        except CredentialDecodeError as exc:
            logger.warning("Could not decode federated credential: %s", exc)
        else:
            logger.debug("Federated credential claims: %s", redact_sensitive_data(claims))

        failure: NotesAuthError | None = None
        try:
            user = await self.controller.federated_sign_in(credential)
        except NotesAuthError as exc:
            failure = exc
        finally:
            await self.session_store.discard_credential()
            self._busy = False

        if failure is not None:
            logger.warning("Federated sign-in failed: %s", failure)
            self._report(self.on_error, failure)
            raise failure

        self._report(self.on_success, user)
        return user

    async def sign_out(self) -> None:
        """Stop the provider from auto-selecting the last account."""
        if self._library is not None:
            self._library.disable_auto_select()
        await self.session_store.discard_credential()

    @staticmethod
    def _report(callback: Callable[[Any], None] | None, value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Credential bridge callback %r failed", callback)
