"""Application-wide auth wiring.

:func:`create_auth_context` builds every auth component once, from
settings, and returns them together. Consumers receive the context (or
its controller) explicitly; nothing is stored at module level.
"""

from __future__ import annotations

import logging

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .api import ApiGateway
from .bridge import CredentialBridge, ProviderReadiness, create_strategy
from .config import get_settings
from .controller import AuthController
from .identity import GoogleIdentity
from .models import RetentionTier
from .notifications import Notifier
from .session import SessionStore


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

    from .bridge import IdentityLibrary, MountPoint
    from .config import NotesAuthSettings
    from .storage import StorageArea


logger = logging.getLogger("notesauth.auth")


@dataclass
class AuthContext:
    """The auth components of one application instance.

    Use as an async context manager, or call :meth:`aclose` on shutdown.
    """

    settings: NotesAuthSettings
    gateway: ApiGateway
    session_store: SessionStore
    notifier: Notifier
    controller: AuthController
    readiness: ProviderReadiness
    bridge: CredentialBridge
    library: Any = None
    mount: MountPoint | None = None
    _loader: Callable[[], Awaitable[IdentityLibrary]] | None = field(default=None, repr=False)

    async def load_identity(self) -> None:
        """Load the identity library and resolve the bridge's readiness."""
        if self._loader is not None and not self.readiness.is_settled:
            await self.readiness.load(self._loader)

    async def aclose(self) -> None:
        """Close HTTP clients and cancel background sign-ins."""
        await self.bridge.drain()
        await self.gateway.close()
        close = getattr(self.library, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> AuthContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def create_auth_context(
    settings: NotesAuthSettings | None = None,
    *,
    library: IdentityLibrary | None = None,
    mount: MountPoint | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    ephemeral: StorageArea | None = None,
    persistent: StorageArea | None = None,
) -> AuthContext:
    """Build the auth components for one application instance.

    Parameters
    ----------
    settings : NotesAuthSettings, optional
        Loaded settings (default :func:`get_settings`).
    library : IdentityLibrary, optional
        An already-loaded identity library. When omitted, a
        :class:`~notesauth.identity.GoogleIdentity` is created and loaded
        by :meth:`AuthContext.load_identity`.
    mount : MountPoint, optional
        Mount point for the button strategy.
    transport : httpx.AsyncBaseTransport, optional
        Transport for the API Gateway.
    ephemeral, persistent : StorageArea, optional
        Storage areas replacing the configured backends.

    Returns
    -------
    AuthContext
        The wired components.
    """
    settings = settings or get_settings()

    session_store = SessionStore.from_settings(settings.session)
    if ephemeral is not None or persistent is not None:
        session_store = SessionStore(
            ephemeral=ephemeral or session_store.area(RetentionTier.EPHEMERAL),
            persistent=persistent or session_store.area(RetentionTier.PERSISTENT),
            persistent_max_age=settings.session.persistent_max_age_hours * 3600,
            ephemeral_max_age=settings.session.ephemeral_max_age_hours * 3600,
        )

    gateway = ApiGateway.from_settings(
        settings.api,
        token_provider=session_store.get_token,
        transport=transport,
    )
    notifier = Notifier()
    controller = AuthController(gateway, session_store, notifier)

    readiness = ProviderReadiness()
    loader: Callable[[], Awaitable[IdentityLibrary]] | None = None
    if library is None:
        google = GoogleIdentity.from_settings(settings.google)
        library = google
        loader = google.load
    else:
        readiness.mark_ready(library)

    bridge = CredentialBridge(
        controller,
        readiness,
        create_strategy(settings.google, mount),
        settings.google.client_id,
        session_store=session_store,
        ready_timeout=settings.google.ready_timeout_seconds,
    )

    logger.debug(
        "Auth context created for %s (%s strategy)",
        settings.api.base_url,
        settings.google.strategy,
    )
    return AuthContext(
        settings=settings,
        gateway=gateway,
        session_store=session_store,
        notifier=notifier,
        controller=controller,
        readiness=readiness,
        bridge=bridge,
        library=library,
        mount=mount,
        _loader=loader,
    )
