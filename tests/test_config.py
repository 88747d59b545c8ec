"""Tests for configuration classes.

Tests NotesAuthSettings, its sections, TOML layering, environment
overrides, and redaction of secrets in exported output.
"""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from pydantic import ValidationError

from notesauth.config import (
    ApiSettings,
    GoogleSettings,
    NotesAuthSettings,
    SessionSettings,
    clear_settings,
    get_settings,
    reload_settings,
)


if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Run each test in an empty directory with an empty home."""
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    monkeypatch.delenv("NOTESAUTH_CONFIG_FILE", raising=False)
    clear_settings()
    yield work
    clear_settings()


class TestDefaults:
    """Tests for built-in defaults."""

    def test_api_defaults(self) -> None:
        """API section points at the local backend."""
        settings = ApiSettings()
        assert settings.base_url == "http://localhost:3000"
        assert settings.timeout_seconds == 30.0
        assert settings.show_dev_otp is False

    def test_session_defaults(self) -> None:
        """Persistent tier on disk, ephemeral tier in memory, 24h/8h."""
        settings = SessionSettings()
        assert settings.persistent_backend == "file"
        assert settings.ephemeral_backend == "memory"
        assert settings.persistent_max_age_hours == 24.0
        assert settings.ephemeral_max_age_hours == 8.0
        assert settings.persistent_path.endswith("session.json")

    def test_google_defaults(self) -> None:
        """Prompt strategy with a 10 second readiness timeout."""
        settings = GoogleSettings()
        assert settings.client_id == ""
        assert settings.strategy == "prompt"
        assert settings.ready_timeout_seconds == 10.0
        assert settings.render_grace_seconds == 0.5

    def test_button_options(self) -> None:
        """Button options carry the configured look."""
        options = GoogleSettings(button_theme="filled_blue", button_width="240").button_options()
        assert options == {
            "theme": "filled_blue",
            "size": "large",
            "text": "continue_with",
            "shape": "rectangular",
            "width": "240",
        }

    def test_base_url_trailing_slash_stripped(self) -> None:
        """Trailing slashes are removed from the base URL."""
        assert ApiSettings(base_url="https://notes.example.com/").base_url == (
            "https://notes.example.com"
        )


class TestEnvironment:
    """Tests for environment variable overrides."""

    def test_section_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """NOTESAUTH_<SECTION>__<FIELD> overrides the default."""
        monkeypatch.setenv("NOTESAUTH_API__BASE_URL", "https://api.example.com")
        monkeypatch.setenv("NOTESAUTH_SESSION__PERSISTENT_BACKEND", "keyring")
        settings = NotesAuthSettings()
        assert settings.api.base_url == "https://api.example.com"
        assert settings.session.persistent_backend == "keyring"

    def test_invalid_backend_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unknown backend fails validation."""
        monkeypatch.setenv("NOTESAUTH_SESSION__PERSISTENT_BACKEND", "redis")
        with pytest.raises(ValidationError):
            SessionSettings()

    def test_get_settings_cached(self) -> None:
        """get_settings returns the same instance until cleared."""
        first = get_settings()
        assert get_settings() is first
        assert reload_settings() is not first


class TestTomlLayering:
    """Tests for TOML configuration files."""

    def test_local_toml(self, isolated_config: Path) -> None:
        """./notesauth.toml is applied."""
        (isolated_config / "notesauth.toml").write_text(
            '[api]\nbase_url = "https://notes.example.com/"\n\n[google]\nstrategy = "button"\n',
            encoding="utf-8",
        )
        settings = NotesAuthSettings()
        assert settings.api.base_url == "https://notes.example.com"
        assert settings.google.strategy == "button"

    def test_pyproject_tool_section(self, isolated_config: Path) -> None:
        """[tool.notesauth] in pyproject.toml is applied."""
        (isolated_config / "pyproject.toml").write_text(
            '[project]\nname = "x"\n\n[tool.notesauth.session]\nephemeral_max_age_hours = 2\n',
            encoding="utf-8",
        )
        assert NotesAuthSettings().session.ephemeral_max_age_hours == 2.0

    def test_explicit_file_overrides_local(
        self, isolated_config: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """NOTESAUTH_CONFIG_FILE takes precedence over ./notesauth.toml."""
        (isolated_config / "notesauth.toml").write_text(
            '[api]\ntimeout_seconds = 5\n', encoding="utf-8"
        )
        explicit = tmp_path / "explicit.toml"
        explicit.write_text('[api]\ntimeout_seconds = 7\n', encoding="utf-8")
        monkeypatch.setenv("NOTESAUTH_CONFIG_FILE", str(explicit))
        assert NotesAuthSettings().api.timeout_seconds == 7.0

    def test_env_overrides_toml(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An environment variable beats the same key in a file."""
        (isolated_config / "notesauth.toml").write_text(
            '[api]\ntimeout_seconds = 5\nshow_dev_otp = true\n', encoding="utf-8"
        )
        monkeypatch.setenv("NOTESAUTH_API__TIMEOUT_SECONDS", "9")
        settings = NotesAuthSettings()
        assert settings.api.timeout_seconds == 9.0
        assert settings.api.show_dev_otp is True

    def test_unreadable_toml_ignored(self, isolated_config: Path) -> None:
        """A malformed file is skipped and defaults apply."""
        (isolated_config / "notesauth.toml").write_text("[api\nbase_url =", encoding="utf-8")
        assert NotesAuthSettings().api.base_url == "http://localhost:3000"

    def test_explicit_kwargs_override_toml(self, isolated_config: Path) -> None:
        """Keyword arguments win over file values."""
        (isolated_config / "notesauth.toml").write_text(
            '[api]\nshow_dev_otp = true\n', encoding="utf-8"
        )
        settings = NotesAuthSettings(api={"show_dev_otp": False})
        assert settings.api.show_dev_otp is False


class TestExport:
    """Tests for to_env() and show()."""

    def test_to_env_redacts_secret(self) -> None:
        """The client secret never appears in exported variables."""
        settings = NotesAuthSettings(google={"client_id": "cid", "client_secret": "s3cr3t"})
        output = settings.to_env()
        assert "s3cr3t" not in output
        assert 'export NOTESAUTH_GOOGLE__CLIENT_SECRET="********"' in output
        assert 'export NOTESAUTH_GOOGLE__CLIENT_ID="cid"' in output
        assert 'export NOTESAUTH_API__SHOW_DEV_OTP="false"' in output

    def test_show_lists_sections(self) -> None:
        """show() prints every section and redacts secrets."""
        settings = NotesAuthSettings(google={"client_secret": "s3cr3t"})
        output = settings.show()
        for section in ("[api]", "[session]", "[google]", "[log]"):
            assert section in output
        assert "s3cr3t" not in output
        assert "client_secret" in output
