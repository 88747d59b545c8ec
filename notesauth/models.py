"""Data model for notesauth.

Wire models (pydantic) mirror the JSON shapes returned by the notes
backend; state types (dataclasses) are the values the auth controller
publishes to its listeners.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field


class RetentionTier(str, Enum):
    """Durability class a session is stored under."""

    EPHEMERAL = "ephemeral"
    PERSISTENT = "persistent"


class OtpPurpose(str, Enum):
    """What an OTP challenge is for."""

    SIGNUP = "signup"
    SIGNIN = "signin"


class User(BaseModel):
    """User profile as returned by the backend.

    Immutable; the controller replaces it wholesale on each successful
    auth operation.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    name: str
    email: str
    date_of_birth: str = Field(default="", alias="dob")
    created_at: str = Field(default="", alias="createdAt")

    def to_wire(self) -> dict[str, str]:
        """Serialize using the backend's field names."""
        return self.model_dump(by_alias=True)


class OtpResponse(BaseModel):
    """Response to ``/api/auth/signup`` and ``/api/auth/signin``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str = ""
    email: str
    id: str | None = Field(default=None, alias="_id")
    otp: str | None = None
    expires_at: str | None = Field(default=None, alias="expiresAt")


class AuthResponse(BaseModel):
    """Response to the OTP verification and Google endpoints."""

    model_config = ConfigDict(extra="ignore")

    user: User
    token: str | None = None
    message: str = ""


@dataclass(frozen=True)
class SessionRecord:
    """A persisted session.

    Attributes
    ----------
    user : User
        The signed-in user.
    token : str or None
        Bearer token for API requests, if the backend issued one.
    retention_tier : RetentionTier
        The tier the record was written to and read from.
    issued_at : float
        Unix timestamp of the write.
    """

    user: User
    token: str | None
    retention_tier: RetentionTier
    issued_at: float

    def age(self, now: float | None = None) -> float:
        """Seconds elapsed since the record was written."""
        return (time.time() if now is None else now) - self.issued_at


@dataclass(frozen=True)
class OtpChallenge:
    """The most recent OTP request for an ``(email, purpose)`` pair.

    Attributes
    ----------
    email : str
        Address the code was sent to.
    purpose : OtpPurpose
        Sign-up or sign-in.
    sequence : int
        Request sequence number captured when the request was issued.
    code : str or None
        The code echoed back by the backend (development backends only).
    expires_at : str or None
        Expiry reported by the backend.
    issued_at : float
        Unix timestamp when the challenge was recorded.
    """

    email: str
    purpose: OtpPurpose
    sequence: int
    code: str | None = None
    expires_at: str | None = None
    issued_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Unauthenticated:
    """No user is signed in."""

    name = "unauthenticated"


@dataclass(frozen=True)
class OtpPending:
    """An OTP was requested and awaits confirmation."""

    purpose: OtpPurpose
    email: str

    name = "otp_pending"


@dataclass(frozen=True)
class Authenticated:
    """A user is signed in."""

    user: User

    name = "authenticated"


AuthState = Union[Unauthenticated, OtpPending, Authenticated]
