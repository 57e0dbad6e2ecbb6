"""Shared test fixtures for ssoconnect.

Provides isolated config environments, output state management, a CLI
runner, and builders for provider responses and ID tokens. These fixtures
are automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import httpx
import jwt
import pytest

from ssoconnect.models import OpenIdConnectorConfig, ProviderMetadata
from ssoconnect.output import OutputFormat, OutputManager, reset_output, set_output


ISSUER = "https://idp.test"
SERVER_URL = "https://git.example.com"
NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def provider_metadata() -> ProviderMetadata:
    return ProviderMetadata(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        userinfo_endpoint=f"{ISSUER}/userinfo",
    )


@pytest.fixture
def connector_config() -> OpenIdConnectorConfig:
    """An OpenID connector reading its secret from an inline value."""
    return OpenIdConnectorConfig(
        name="idp",
        issuer_url=ISSUER,
        client_id="client-1",
        client_secret_source="value:s3cret",
    )


def make_id_token(
    issuer: str | None = ISSUER,
    subject: str | None = "u123",
    issued_at: datetime | None = NOW,
    expires_at: datetime | None = None,
    **extra: Any,
) -> str:
    """Build an unsigned-looking HS256 ID token with the given claims."""
    claims: dict[str, Any] = {"aud": "client-1", **extra}
    if issuer is not None:
        claims["iss"] = issuer
    if subject is not None:
        claims["sub"] = subject
    if issued_at is not None:
        claims["iat"] = int(issued_at.timestamp())
    if expires_at is not None:
        claims["exp"] = int(expires_at.timestamp())
    return jwt.encode(claims, "test-signing-key-with-enough-length!", algorithm="HS256")


def mock_response(
    json_body: Any = None,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> MagicMock:
    """Create a mock :class:`httpx.Response` returning *json_body*.

    Passing an exception instance as *json_body* makes ``.json()`` raise it.
    """
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.headers = httpx.Headers(headers or {})
    if isinstance(json_body, Exception):
        response.json.side_effect = json_body
    else:
        response.json.return_value = json_body
    response.text = str(json_body)

    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=response,
        )
    else:
        response.raise_for_status.return_value = response
    return response


@pytest.fixture
def id_token_factory():
    """Return :func:`make_id_token` for building ID tokens in tests."""
    return make_id_token


@pytest.fixture
def response_factory():
    """Return :func:`mock_response` for building provider responses in tests."""
    return mock_response


@pytest.fixture
def http_client() -> MagicMock:
    """A mock :class:`httpx.Client`; tests set ``get``/``post`` return values."""
    return MagicMock(spec=httpx.Client)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config, and clears
    SSOCONNECT_* environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("ssoconnect.config._is_xdg_platform", lambda: True)
    monkeypatch.delenv("SSOCONNECT_SERVER_URL", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> OutputManager:
    """Install a JSON-format OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
