"""Tier-aware session persistence.

Holds one session record (user, bearer token, write timestamp) in
exactly one of two storage areas: the ephemeral tier or the persistent
tier. Reads check the persistent tier first. A record older than its
tier's maximum age is purged from both tiers on read.
"""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import json
import logging
import time

from typing import TYPE_CHECKING

from pydantic import ValidationError

from .models import RetentionTier, SessionRecord, User


if TYPE_CHECKING:
    from collections.abc import Callable

    from .config import SessionSettings
    from .storage import StorageArea


logger = logging.getLogger("notesauth.session")

USER_KEY = "user"
TIMESTAMP_KEY = "authTimestamp"
TOKEN_KEY = "jwt_token"  # noqa: S105
CREDENTIAL_KEY = "google_credential"

_RECORD_KEYS = (USER_KEY, TIMESTAMP_KEY, TOKEN_KEY)

PERSISTENT_MAX_AGE = 24 * 60 * 60.0
EPHEMERAL_MAX_AGE = 8 * 60 * 60.0


class SessionStore:
    """Persists the session record in one of two retention tiers.

    Parameters
    ----------
    ephemeral : StorageArea
        Storage for sessions that end with the app session.
    persistent : StorageArea
        Storage for "keep me signed in" and federated sessions.
    persistent_max_age : float
        Maximum record age in seconds for the persistent tier (default 24h).
    ephemeral_max_age : float
        Maximum record age in seconds for the ephemeral tier (default 8h).
    clock : callable, optional
        Returns the current Unix time in seconds (default ``time.time``).
    """

    def __init__(
        self,
        ephemeral: StorageArea,
        persistent: StorageArea,
        persistent_max_age: float = PERSISTENT_MAX_AGE,
        ephemeral_max_age: float = EPHEMERAL_MAX_AGE,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the session store."""
        self._areas: dict[RetentionTier, StorageArea] = {
            RetentionTier.PERSISTENT: persistent,
            RetentionTier.EPHEMERAL: ephemeral,
        }
        self._max_age = {
            RetentionTier.PERSISTENT: persistent_max_age,
            RetentionTier.EPHEMERAL: ephemeral_max_age,
        }
        self._clock = clock or time.time

    @classmethod
    def from_settings(cls, settings: SessionSettings) -> SessionStore:
        """Build a session store from the ``session`` settings section."""
        from .storage import create_storage

        return cls(
            ephemeral=create_storage(
                settings.ephemeral_backend,
                path=settings.ephemeral_path,
                service_name=settings.keyring_service,
                name="ephemeral",
            ),
            persistent=create_storage(
                settings.persistent_backend,
                path=settings.persistent_path,
                service_name=settings.keyring_service,
                name="persistent",
            ),
            persistent_max_age=settings.persistent_max_age_hours * 3600,
            ephemeral_max_age=settings.ephemeral_max_age_hours * 3600,
        )

    def area(self, tier: RetentionTier) -> StorageArea:
        """Return the storage area backing ``tier``."""
        return self._areas[tier]

    def max_age(self, tier: RetentionTier) -> float:
        """Return the maximum record age in seconds for ``tier``."""
        return self._max_age[tier]

    async def save(self, user: User, token: str | None, tier: RetentionTier) -> None:
        """Write the session record to ``tier`` and remove it from the other.

        Never raises: a storage failure only means the user will be asked
        to sign in again next time.

        Parameters
        ----------
        user : User
            The signed-in user.
        token : str or None
            The bearer token issued with the user, if any.
        tier : RetentionTier
            Where to keep the record.
        """
        values = {
            USER_KEY: json.dumps(user.to_wire()),
            TIMESTAMP_KEY: str(int(self._clock() * 1000)),
        }
        if token:
            values[TOKEN_KEY] = token

        other = self._other(tier)
        try:
            await self._areas[other].remove(*_RECORD_KEYS)
            if not token:
                await self._areas[tier].remove(TOKEN_KEY)
            await self._areas[tier].set_many(values)
        except Exception as exc:
            logger.warning("Failed to persist session to %s tier: %s", tier.value, exc)
            return
        logger.debug("Session for %s saved to %s tier", user.email, tier.value)

    async def load(self) -> SessionRecord | None:
        """Return the live session record, or None.

        Checks the persistent tier, then the ephemeral tier. An expired or
        unreadable record purges both tiers. A standalone bearer token
        without a user record is left in place.
        """
        for tier in (RetentionTier.PERSISTENT, RetentionTier.EPHEMERAL):
            area = self._areas[tier]
            try:
                user_json = await area.get(USER_KEY)
                if user_json is None:
                    continue
                timestamp = await area.get(TIMESTAMP_KEY)
                token = await area.get(TOKEN_KEY)
            except Exception as exc:
                logger.warning("Failed to read %s tier: %s", tier.value, exc)
                continue

            record = self._parse(tier, user_json, timestamp, token)
            if record is None:
                await self.clear()
                return None

            if record.age(self._clock()) >= self._max_age[tier]:
                logger.info("Session in %s tier expired; clearing", tier.value)
                await self.clear()
                return None

            return record

        return None

    async def clear(self) -> None:
        """Purge the session from both tiers. Never raises."""
        for tier, area in self._areas.items():
            try:
                await area.remove(*_RECORD_KEYS, CREDENTIAL_KEY)
            except Exception as exc:
                logger.warning("Failed to clear %s tier: %s", tier.value, exc)

    async def get_token(self) -> str | None:
        """Return the bearer token, checking the persistent tier first."""
        for tier in (RetentionTier.PERSISTENT, RetentionTier.EPHEMERAL):
            try:
                token = await self._areas[tier].get(TOKEN_KEY)
            except Exception as exc:
                logger.warning("Failed to read token from %s tier: %s", tier.value, exc)
                continue
            if token:
                return token
        return None

    async def discard_token(self) -> None:
        """Remove the bearer token from both tiers."""
        for tier, area in self._areas.items():
            try:
                await area.remove(TOKEN_KEY)
            except Exception as exc:
                logger.warning("Failed to remove token from %s tier: %s", tier.value, exc)

    async def cache_credential(self, credential: str) -> None:
        """Hold a raw federated credential until its sign-in attempt settles."""
        try:
            await self._areas[RetentionTier.PERSISTENT].set(CREDENTIAL_KEY, credential)
        except Exception as exc:
            logger.warning("Failed to cache federated credential: %s", exc)

    async def cached_credential(self) -> str | None:
        """Return the cached raw federated credential, if any."""
        try:
            return await self._areas[RetentionTier.PERSISTENT].get(CREDENTIAL_KEY)
        except Exception as exc:
            logger.warning("Failed to read cached federated credential: %s", exc)
            return None

    async def discard_credential(self) -> None:
        """Drop the cached raw federated credential."""
        try:
            await self._areas[RetentionTier.PERSISTENT].remove(CREDENTIAL_KEY)
        except Exception as exc:
            logger.warning("Failed to discard federated credential: %s", exc)

    @staticmethod
    def _other(tier: RetentionTier) -> RetentionTier:
        if tier is RetentionTier.PERSISTENT:
            return RetentionTier.EPHEMERAL
        return RetentionTier.PERSISTENT

    @staticmethod
    def _parse(
        tier: RetentionTier,
        user_json: str,
        timestamp: str | None,
        token: str | None,
    ) -> SessionRecord | None:
        """Build a record from raw tier values, or None if they are malformed."""
        try:
            issued_at = int(timestamp or "") / 1000
            user = User.model_validate(json.loads(user_json))
        except (ValueError, ValidationError) as exc:
            logger.warning("Discarding malformed session in %s tier: %s", tier.value, exc)
            return None
        return SessionRecord(user=user, token=token, retention_tier=tier, issued_at=issued_at)
