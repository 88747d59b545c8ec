"""notesauth - client-side authentication and session engine for the notes app.

Drives OTP sign-up and sign-in, Google federated sign-in, and keeps the
session in an ephemeral or persistent tier so it survives restarts.

Create one context per application and pass it around::

    async with create_auth_context() as ctx:
        await ctx.controller.bootstrap()
"""

from .api import ApiGateway
from .bridge import (
    BridgeState,
    ButtonStrategy,
    CredentialBridge,
    PromptStrategy,
    ProviderReadiness,
    decode_credential,
)
from .challenges import ChallengeTracker
from .config import (
    ApiSettings,
    GoogleSettings,
    LogSettings,
    NotesAuthSettings,
    SessionSettings,
    get_settings,
)
from .context import AuthContext, create_auth_context
from .controller import AuthController
from .exceptions import (
    ApiError,
    AuthStateError,
    BridgeNotReadyError,
    CredentialDecodeError,
    IdentityProviderError,
    NetworkError,
    NotesAuthError,
    NotFoundError,
    RequestError,
    ServerError,
    StaleResponseError,
)
from .identity import ButtonMount, GoogleIdentity
from .log import enable_debug, get_logger, set_level
from .models import (
    Authenticated,
    AuthResponse,
    AuthState,
    OtpChallenge,
    OtpPending,
    OtpPurpose,
    OtpResponse,
    RetentionTier,
    SessionRecord,
    Unauthenticated,
    User,
)
from .notifications import Notification, Notifier, Variant
from .session import SessionStore
from .storage import FileStorage, KeyringStorage, MemoryStorage, StorageArea, create_storage


__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "ApiGateway",
    "ApiSettings",
    "AuthContext",
    "AuthController",
    "AuthResponse",
    "AuthState",
    "AuthStateError",
    "Authenticated",
    "BridgeNotReadyError",
    "BridgeState",
    "ButtonMount",
    "ButtonStrategy",
    "ChallengeTracker",
    "CredentialBridge",
    "CredentialDecodeError",
    "FileStorage",
    "GoogleIdentity",
    "GoogleSettings",
    "IdentityProviderError",
    "KeyringStorage",
    "LogSettings",
    "MemoryStorage",
    "NetworkError",
    "NotFoundError",
    "NotesAuthError",
    "NotesAuthSettings",
    "Notification",
    "Notifier",
    "OtpChallenge",
    "OtpPending",
    "OtpPurpose",
    "OtpResponse",
    "PromptStrategy",
    "ProviderReadiness",
    "RequestError",
    "RetentionTier",
    "ServerError",
    "SessionRecord",
    "SessionSettings",
    "SessionStore",
    "StaleResponseError",
    "StorageArea",
    "Unauthenticated",
    "User",
    "Variant",
    "__version__",
    "create_auth_context",
    "create_storage",
    "decode_credential",
    "enable_debug",
    "get_logger",
    "get_settings",
    "set_level",
]
