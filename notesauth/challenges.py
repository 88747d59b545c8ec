"""Current-challenge bookkeeping for OTP flows.

The backend holds the authoritative challenge; the client only tracks
which ``(email, purpose)`` pair is current and fences off responses to
requests that a newer request has superseded.
"""

from __future__ import annotations

import itertools
import time

from .models import OtpChallenge, OtpPurpose


_Key = tuple[str, OtpPurpose]


class ChallengeTracker:
    """Tracks the latest OTP challenge and request sequence per pair.

    Every OTP request and confirmation captures a sequence number with
    :meth:`begin`; its response may only be applied while
    :meth:`is_current` still holds for that number.
    """

    def __init__(self) -> None:
        """Initialize an empty tracker."""
        self._counter = itertools.count(1)
        self._latest: dict[_Key, int] = {}
        self._challenges: dict[_Key, OtpChallenge] = {}

    @staticmethod
    def _key(email: str, purpose: OtpPurpose) -> _Key:
        return (email.strip().lower(), purpose)

    def begin(self, email: str, purpose: OtpPurpose) -> int:
        """Issue the next request sequence number for ``(email, purpose)``."""
        sequence = next(self._counter)
        self._latest[self._key(email, purpose)] = sequence
        return sequence

    def is_current(self, email: str, purpose: OtpPurpose, sequence: int) -> bool:
        """Whether ``sequence`` is still the newest request for the pair."""
        return self._latest.get(self._key(email, purpose)) == sequence

    def record(
        self,
        email: str,
        purpose: OtpPurpose,
        sequence: int,
        code: str | None = None,
        expires_at: str | None = None,
    ) -> OtpChallenge:
        """Store a newly issued challenge, superseding any earlier one."""
        challenge = OtpChallenge(
            email=email,
            purpose=purpose,
            sequence=sequence,
            code=code,
            expires_at=expires_at,
            issued_at=time.time(),
        )
        self._challenges[self._key(email, purpose)] = challenge
        return challenge

    def current(self, email: str, purpose: OtpPurpose) -> OtpChallenge | None:
        """Return the current challenge for the pair, if any."""
        return self._challenges.get(self._key(email, purpose))

    def discard(self, email: str, purpose: OtpPurpose) -> None:
        """Forget the current challenge for the pair."""
        self._challenges.pop(self._key(email, purpose), None)

    def reset(self) -> None:
        """Forget every challenge and make all in-flight responses stale."""
        self._challenges.clear()
        for key in self._latest:
            self._latest[key] = next(self._counter)
