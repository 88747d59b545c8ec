"""Layered settings for notesauth, built on pydantic-settings.

Sources, lowest priority first:

1. Built-in defaults
2. ``[tool.notesauth]`` in ./pyproject.toml
3. ./notesauth.toml
4. The per-user ``config.toml`` (``~/.config/notesauth`` or ``%APPDATA%``)
5. The file named by ``NOTESAUTH_CONFIG_FILE``
6. Environment variables, ``NOTESAUTH_<SECTION>__<FIELD>``
   (e.g. ``NOTESAUTH_API__BASE_URL``, ``NOTESAUTH_GOOGLE__CLIENT_ID``)
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("notesauth.config")

CONFIG_FILE_ENV = "NOTESAUTH_CONFIG_FILE"


def _user_config_dir() -> Path:
    """Return the per-user configuration directory."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / "notesauth"
    return Path("~/.config/notesauth").expanduser()


def _config_sources() -> list[tuple[Path, tuple[str, ...]]]:
    """Existing config files, lowest priority first, with the table each one uses."""
    candidates: list[tuple[Path, tuple[str, ...]]] = [
        (Path("pyproject.toml"), ("tool", "notesauth")),
        (Path("notesauth.toml"), ()),
        (_user_config_dir() / "config.toml", ()),
    ]
    explicit = os.environ.get(CONFIG_FILE_ENV)
    if explicit:
        candidates.append((Path(explicit).expanduser(), ()))
    return [(path, table) for path, table in candidates if path.is_file()]


def _load_toml_config() -> dict[str, Any]:
    """Read every config source and merge them into one mapping."""
    merged: dict[str, Any] = {}
    for path, table in _config_sources():
        try:
            data: Any = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", path, exc)
            continue
        for name in table:
            data = data.get(name, {}) if isinstance(data, dict) else {}
        if data:
            logger.debug("Loaded settings from %s", path)
            merged = _deep_merge(merged, data)
    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into shared tables."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


# Never printed by `notesauth config`
_SENSITIVE_FIELDS: set[str] = {"client_secret"}

_REDACTED = "********"

# (env prefix, attribute) pairs for the nested sections
_SECTIONS = (
    ("API", "api"),
    ("SESSION", "session"),
    ("GOOGLE", "google"),
    ("LOG", "log"),
)


class ApiSettings(BaseSettings):
    """API Gateway settings.

    Environment prefix: NOTESAUTH_API__
    Example: NOTESAUTH_API__BASE_URL=https://notes.example.com
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTESAUTH_API__",
        extra="ignore",
    )

    base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the notes backend",
    )
    timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        description="Per-request timeout for API calls",
    )
    show_dev_otp: bool = Field(
        default=False,
        description="Display the OTP echoed by development backends",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended directly."""
        return v.rstrip("/")


class SessionSettings(BaseSettings):
    """Session persistence settings.

    The ephemeral tier holds sessions that were not marked "keep me
    signed in"; the persistent tier holds the rest.

    Environment prefix: NOTESAUTH_SESSION__
    Example: NOTESAUTH_SESSION__PERSISTENT_BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTESAUTH_SESSION__",
        extra="ignore",
    )

    persistent_backend: Literal["file", "keyring", "memory"] = Field(
        default="file",
        description="Storage for the persistent tier: file, keyring, or memory",
    )
    ephemeral_backend: Literal["memory", "file"] = Field(
        default="memory",
        description="Storage for the ephemeral tier: memory or file",
    )
    persistent_path: str = Field(
        default_factory=lambda: str(_user_config_dir() / "session.json"),
        description="JSON file used by the file-backed persistent tier",
    )
    ephemeral_path: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "notesauth" / "session.json"),
        description="JSON file used by the file-backed ephemeral tier",
    )
    keyring_service: str = Field(
        default="notesauth",
        description="Service name used with the OS keyring",
    )
    persistent_max_age_hours: float = Field(default=24.0, gt=0)
    ephemeral_max_age_hours: float = Field(default=8.0, gt=0)


class GoogleSettings(BaseSettings):
    """Google federated sign-in settings.

    Environment prefix: NOTESAUTH_GOOGLE__
    Example: NOTESAUTH_GOOGLE__CLIENT_ID=1234.apps.googleusercontent.com
    Example: NOTESAUTH_GOOGLE__STRATEGY=button
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTESAUTH_GOOGLE__",
        extra="ignore",
    )

    client_id: str = Field(default="", description="Google OAuth2 client ID")
    client_secret: str = Field(
        default="",
        description="Google OAuth2 client secret (empty for public clients with PKCE)",
    )
    strategy: Literal["prompt", "button"] = Field(
        default="prompt",
        description="How the sign-in is offered: a transient prompt or a rendered button",
    )
    ready_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Maximum seconds to wait for the identity library to load",
    )
    render_grace_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Seconds to wait before re-rendering an empty button mount point",
    )
    auth_timeout_seconds: float = Field(
        default=120.0,
        ge=10.0,
        description="Maximum seconds to wait for the OAuth2 redirect",
    )

    button_theme: Literal["outline", "filled_blue", "filled_black"] = "outline"
    button_size: Literal["large", "medium", "small"] = "large"
    button_text: Literal["signin_with", "signup_with", "continue_with", "signin"] = (
        "continue_with"
    )
    button_shape: Literal["rectangular", "pill", "circle", "square"] = "rectangular"
    button_width: str = "100%"

    def button_options(self) -> dict[str, str]:
        """Render options passed to the identity library's button renderer."""
        return {
            "theme": self.button_theme,
            "size": self.button_size,
            "text": self.button_text,
            "shape": self.button_shape,
            "width": self.button_width,
        }


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: NOTESAUTH_LOG__
    Example: NOTESAUTH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTESAUTH_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class NotesAuthSettings(BaseSettings):
    """All notesauth settings, one attribute per section.

    Keyword arguments override the TOML sources, which are read in the
    order listed in this module's docstring. Each section reads its own
    ``NOTESAUTH_<SECTION>__`` variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTESAUTH__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    api: ApiSettings = Field(default_factory=ApiSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        merged = _deep_merge(_load_toml_config(), data)
        # File values are passed as init kwargs, which pydantic-settings ranks
        # above the environment; drop the ones an env var also sets.
        for prefix, attr in _SECTIONS:
            values = merged.get(attr)
            if not isinstance(values, dict):
                continue
            explicit = data.get(attr) if isinstance(data.get(attr), dict) else {}
            kept = {
                key: value
                for key, value in values.items()
                if key in explicit or f"NOTESAUTH_{prefix}__{key.upper()}" not in os.environ
            }
            merged[attr] = type(self).model_fields[attr].annotation(**kept)
        super().__init__(**merged)

    def _flatten(self) -> list[tuple[str, str, Any]]:
        """``(section, field, value)`` for every setting, secrets masked."""
        rows: list[tuple[str, str, Any]] = []
        for prefix, attr in _SECTIONS:
            section = getattr(self, attr)
            for name in type(section).model_fields:
                value = _REDACTED if name in _SENSITIVE_FIELDS else getattr(section, name)
                rows.append((prefix, name, value))
        return rows

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = ["# notesauth Environment Variables", "# Generated by: notesauth config --env", ""]
        for prefix, name, value in self._flatten():
            if isinstance(value, bool):
                value = str(value).lower()
            lines.append(f'export NOTESAUTH_{prefix}__{name.upper()}="{value}"')
        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table, one block per section."""
        lines = ["notesauth Configuration", "=" * 60]
        current = None
        for prefix, name, value in self._flatten():
            if prefix != current:
                current = prefix
                lines.extend(["", f"[{prefix.lower()}]", "-" * 40])
            text = str(value)
            if len(text) > 50:
                text = f"{text[:47]}..."
            lines.append(f"  {name:24} = {text}")
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> NotesAuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return NotesAuthSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> NotesAuthSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
