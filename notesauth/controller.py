"""Authentication state machine.

AuthController owns the authentication state of one application
instance. It drives the OTP sign-up and sign-in flows and federated
sign-in, writes sessions through to the SessionStore, restores them on
start-up, and reports every outcome to the Notifier.

State transitions::

    Unauthenticated --request_*_otp--> OtpPending(purpose, email)
    OtpPending --confirm_*_otp--> Authenticated(user)
    Unauthenticated --federated_sign_in--> Authenticated(user)
    Authenticated --logout--> Unauthenticated
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from .challenges import ChallengeTracker
from .exceptions import ApiError, AuthStateError, NotesAuthError, StaleResponseError
from .models import (
    Authenticated,
    OtpPending,
    OtpPurpose,
    RetentionTier,
    Unauthenticated,
)
from .notifications import Notifier


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .api import ApiGateway
    from .models import AuthResponse, AuthState, OtpChallenge, OtpResponse, User
    from .session import SessionStore

    StateListener = Callable[[AuthState], None]


logger = logging.getLogger("notesauth.auth")

OTP_SENT = "OTP sent to your email. Please check and verify."


class AuthController:
    """Orchestrates sign-up, sign-in, federated sign-in, logout and restore.

    One instance is created per application (see
    :func:`notesauth.context.create_auth_context`) and handed to every
    consumer; there is no module-level auth state.

    Parameters
    ----------
    gateway : ApiGateway
        Client for the backend's auth endpoints.
    session_store : SessionStore
        Where sessions are persisted.
    notifier : Notifier, optional
        Receives success/failure notifications for the UI.
    tracker : ChallengeTracker, optional
        OTP challenge bookkeeping (a fresh tracker by default).
    """

    def __init__(
        self,
        gateway: ApiGateway,
        session_store: SessionStore,
        notifier: Notifier | None = None,
        tracker: ChallengeTracker | None = None,
    ) -> None:
        """Initialize the controller in the Unauthenticated state."""
        self.gateway = gateway
        self.session_store = session_store
        self.notifier = notifier or Notifier()
        self.tracker = tracker or ChallengeTracker()

        self._state: AuthState = Unauthenticated()
        self._is_loading = True
        self._confirming_signup = False
        self._signup_details: dict[str, tuple[str, str]] = {}
        self._listeners: list[StateListener] = []

    # ── Published state ─────────────────────────────────────────────

    @property
    def state(self) -> AuthState:
        """Current authentication state."""
        return self._state

    @property
    def user(self) -> User | None:
        """The signed-in user, if any."""
        if isinstance(self._state, Authenticated):
            return self._state.user
        return None

    @property
    def is_authenticated(self) -> bool:
        """Whether a user is signed in."""
        return isinstance(self._state, Authenticated)

    @property
    def is_loading(self) -> bool:
        """True until :meth:`bootstrap` has settled."""
        return self._is_loading

    @property
    def pending_challenge(self) -> OtpChallenge | None:
        """The current OTP challenge while an OTP is pending."""
        if isinstance(self._state, OtpPending):
            return self.tracker.current(self._state.email, self._state.purpose)
        return None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new state; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_state(self, state: AuthState, *, force: bool = False) -> None:
        if state == self._state and not force:
            return
        logger.debug("Auth state %s -> %s", self._state.name, state.name)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Auth state listener %r failed", listener)

    # ── OTP flows ───────────────────────────────────────────────────

    async def request_signup_otp(self, email: str, name: str, dob: str) -> OtpChallenge:
        """Ask the backend to send a sign-up OTP.

        Parameters
        ----------
        email : str
            Address of the new account.
        name : str
            Display name.
        dob : str
            Date of birth (``YYYY-MM-DD``).

        Returns
        -------
        OtpChallenge
            The newly current challenge.

        Raises
        ------
        ApiError
            If the backend rejects the request (state unchanged).
        StaleResponseError
            If a newer request for the same email superseded this one.
        """
        email = self._require_email(email, "request_signup_otp")
        challenge = await self._request_otp(
            OtpPurpose.SIGNUP,
            email,
            lambda: self.gateway.signup(email, name, dob),
            "Sign up failed",
        )
        self._signup_details[email] = (name, dob)
        return challenge

    async def request_signin_otp(self, email: str) -> OtpChallenge:
        """Ask the backend to send a sign-in OTP.

        Raises
        ------
        ApiError
            If the backend rejects the request (state unchanged).
        StaleResponseError
            If a newer request for the same email superseded this one.
        """
        email = self._require_email(email, "request_signin_otp")
        return await self._request_otp(
            OtpPurpose.SIGNIN,
            email,
            lambda: self.gateway.signin(email),
            "Sign in failed",
        )

    async def resend_otp(self) -> OtpChallenge:
        """Request a fresh code for the pending challenge, superseding the old one."""
        state = self._state
        if not isinstance(state, OtpPending):
            msg = "No OTP is pending"
            raise AuthStateError(msg, operation="resend_otp", state=state.name)
        if state.purpose is OtpPurpose.SIGNUP:
            name, dob = self._signup_details.get(state.email, ("", ""))
            return await self.request_signup_otp(state.email, name, dob)
        return await self.request_signin_otp(state.email)

    async def confirm_signup_otp(self, code: str) -> User:
        """Confirm the pending sign-up OTP.

        The session is stored in the ephemeral tier.

        Raises
        ------
        AuthStateError
            If no sign-up OTP is pending.
        ApiError
            If the backend rejects the code (state stays OtpPending).
        """
        pending = self._require_pending(OtpPurpose.SIGNUP, "confirm_signup_otp")
        self._confirming_signup = True
        try:
            return await self._confirm(
                pending,
                code,
                self.gateway.verify_otp,
                RetentionTier.EPHEMERAL,
                "Account created successfully!",
            )
        finally:
            self._confirming_signup = False

    async def confirm_signin_otp(self, code: str, keep_signed_in: bool = False) -> User:
        """Confirm the pending sign-in OTP.

        Parameters
        ----------
        code : str
            The code the user entered.
        keep_signed_in : bool
            Store the session in the persistent tier instead of the
            ephemeral one.

        Raises
        ------
        AuthStateError
            If no sign-in OTP is pending.
        ApiError
            If the backend rejects the code (state stays OtpPending).
        """
        pending = self._require_pending(OtpPurpose.SIGNIN, "confirm_signin_otp")
        tier = RetentionTier.PERSISTENT if keep_signed_in else RetentionTier.EPHEMERAL
        return await self._confirm(
            pending,
            code,
            self.gateway.verify_signin_otp,
            tier,
            "Signed in successfully!",
        )

    async def _request_otp(
        self,
        purpose: OtpPurpose,
        email: str,
        call: Callable[[], Awaitable[OtpResponse]],
        failure_text: str,
    ) -> OtpChallenge:
        sequence = self.tracker.begin(email, purpose)
        try:
            response = await call()
        except ApiError as exc:
            if not self.tracker.is_current(email, purpose, sequence):
                raise self._stale(email, purpose) from exc
            await self.notifier.failure(exc, failure_text)
            raise

        if not self.tracker.is_current(email, purpose, sequence):
            raise self._stale(email, purpose)

        challenge = self.tracker.record(
            email, purpose, sequence, code=response.otp, expires_at=response.expires_at
        )
        self._set_state(OtpPending(purpose, email))
        logger.info("%s OTP issued for %s", purpose.value, email)
        await self.notifier.success(OTP_SENT)
        return challenge

    async def _confirm(
        self,
        pending: OtpPending,
        code: str,
        call: Callable[[str, str], Awaitable[AuthResponse]],
        tier: RetentionTier,
        success_text: str,
    ) -> User:
        code = code.strip()
        if not code:
            msg = "OTP code must not be empty"
            raise ValueError(msg)

        email, purpose = pending.email, pending.purpose
        sequence = self.tracker.begin(email, purpose)
        try:
            response = await call(email, code)
        except ApiError as exc:
            if not self.tracker.is_current(email, purpose, sequence):
                raise self._stale(email, purpose) from exc
            await self.notifier.failure(exc, "OTP verification failed")
            raise

        if not self.tracker.is_current(email, purpose, sequence):
            raise self._stale(email, purpose)

        self.tracker.discard(email, purpose)
        self._signup_details.pop(email, None)
        await self._adopt(response.user, response.token, tier)
        await self.notifier.success(success_text)
        return response.user

    # ── Federated sign-in ───────────────────────────────────────────

    async def federated_sign_in(self, credential: str) -> User:
        """Exchange a raw Google credential for a session.

        The session is always stored in the persistent tier.

        Raises
        ------
        AuthStateError
            If a user is already signed in.
        ApiError
            If the backend rejects the credential (state becomes
            Unauthenticated).
        """
        if isinstance(self._state, Authenticated):
            msg = "Already signed in"
            raise AuthStateError(msg, operation="federated_sign_in", state=self._state.name)

        try:
            response = await self.gateway.google_auth(credential)
        except ApiError as exc:
            self._set_state(Unauthenticated())
            await self.notifier.failure(exc, "Google sign-in failed")
            raise

        await self._adopt(response.user, response.token, RetentionTier.PERSISTENT)
        await self.notifier.success("Signed in with Google successfully!")
        return response.user

    # ── Logout ──────────────────────────────────────────────────────

    async def logout(self) -> None:
        """Sign out locally and on the server.

        Local teardown (session store cleared, state reset) happens even
        when the server call fails; the server error is then reported and
        re-raised.
        """
        error: ApiError | None = None
        try:
            await self.gateway.logout()
        except ApiError as exc:
            error = exc

        await self.session_store.clear()
        self.tracker.reset()
        self._signup_details.clear()
        self._set_state(Unauthenticated())

        if error is not None:
            logger.warning("Server logout failed; local session cleared anyway: %s", error)
            await self.notifier.failure(error, "Logout failed")
            raise error

        logger.info("Logged out")
        await self.notifier.success("Logged out successfully!")

    # ── Start-up ────────────────────────────────────────────────────

    async def bootstrap(self) -> AuthState:
        """Restore the session on application start.

        Adopts a stored session without a network round-trip. Otherwise,
        if a bearer token is stored without a user, fetches the current
        user and stores the session in the ephemeral tier. Any failure
        in that fallback discards the token. Always settles, and clears
        :attr:`is_loading` when done.

        Returns
        -------
        AuthState
            The settled state.
        """
        if self._confirming_signup:
            logger.debug("Sign-up confirmation in flight; skipping session restore")
            return self._state

        self._is_loading = True
        try:
            record = await self.session_store.load()
            if record is not None:
                logger.info(
                    "Restored %s session for %s",
                    record.retention_tier.value,
                    record.user.email,
                )
                self._set_state(Authenticated(record.user), force=True)
                return self._state

            token = await self.session_store.get_token()
            if not token:
                self._set_state(Unauthenticated(), force=True)
                return self._state

            try:
                user = await self.gateway.current_user()
            except NotesAuthError as exc:
                logger.info("Stored token rejected; signing out locally: %s", exc)
                await self.session_store.discard_token()
                self._set_state(Unauthenticated(), force=True)
                return self._state

            await self.session_store.save(user, token, RetentionTier.EPHEMERAL)
            self._set_state(Authenticated(user), force=True)
            return self._state
        finally:
            self._is_loading = False

    # ── Helpers ─────────────────────────────────────────────────────

    async def _adopt(self, user: User, token: str | None, tier: RetentionTier) -> None:
        await self.session_store.save(user, token, tier)
        # Any OTP request or confirmation still in flight is now stale
        self.tracker.reset()
        self._signup_details.clear()
        self._set_state(Authenticated(user))
        logger.info("Signed in as %s (%s session)", user.email, tier.value)

    def _require_email(self, email: str, operation: str) -> str:
        if isinstance(self._state, Authenticated):
            msg = "Already signed in"
            raise AuthStateError(msg, operation=operation, state=self._state.name)
        email = email.strip()
        if not email:
            msg = "Email must not be empty"
            raise ValueError(msg)
        return email

    def _require_pending(self, purpose: OtpPurpose, operation: str) -> OtpPending:
        state = self._state
        if not isinstance(state, OtpPending) or state.purpose is not purpose:
            msg = f"No {purpose.value} OTP is pending"
            raise AuthStateError(msg, operation=operation, state=state.name)
        return state

    @staticmethod
    def _stale(email: str, purpose: OtpPurpose) -> StaleResponseError:
        logger.debug("Discarding superseded %s response for %s", purpose.value, email)
        msg = "Response superseded by a newer request"
        return StaleResponseError(msg, email=email, purpose=purpose.value)
