"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for ssoconnect:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.ssoconnect/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_connectors_dir`.
* **Global config** -- A single :class:`~ssoconnect.models.GlobalConfig`
  JSON file storing the server URL, HTTP settings and output defaults.
* **Connectors** -- One JSON file per SSO connector, each deserialised into
  an :class:`~ssoconnect.models.OpenIdConnectorConfig`. Managed via
  :func:`load_connector_config`, :func:`save_connector_config`,
  :func:`delete_connector_config`.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the global config into the effective
  configuration.
* **Credential resolution** -- :func:`resolve_credential` reads the client
  secret from env vars, files, interactive prompts or an inline value.
* **HTTP client** -- :func:`create_http_client` builds the
  :class:`httpx.Client` used for provider calls, always with a bounded
  timeout.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from ssoconnect.exceptions import ConfigError
from ssoconnect.models import GlobalConfig, OpenIdConnectorConfig, RequestConfig

_APP_NAME = "ssoconnect"
_CONFIG_FILENAME = "config.json"
_SERVER_URL_ENV = "SSOCONNECT_SERVER_URL"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/ssoconnect/`` (default ``~/.config/ssoconnect/``).
    On macOS/Windows: ``~/.ssoconnect/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/ssoconnect/`` (default ``~/.local/share/ssoconnect/``).
    On macOS/Windows: ``~/.ssoconnect/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_connectors_dir() -> Path:
    """Return the connectors directory (``<config_dir>/connectors/``), creating it if necessary.

    Returns:
        Absolute path to the connectors directory (guaranteed to exist).
    """
    path = get_config_dir() / "connectors"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so the final file never exists with wider permissions.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~ssoconnect.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Connectors ---


def _connector_path(name: str) -> Path:
    """Path to a named connector's JSON file."""
    return get_connectors_dir() / f"{name}.json"


def list_connector_configs() -> list[str]:
    """Return all connector names found in the connectors directory, sorted alphabetically.

    Returns:
        A list of connector name strings (file stems, without ``.json``).
    """
    connectors_dir = get_connectors_dir()
    return sorted(
        p.stem for p in connectors_dir.glob("*.json") if p.is_file()
    )


def load_connector_config(name: str) -> OpenIdConnectorConfig:
    """Load and validate a connector configuration from disk.

    Args:
        name: Connector name (corresponds to ``<name>.json`` in the
            connectors directory).

    Returns:
        The deserialised :class:`~ssoconnect.models.OpenIdConnectorConfig`.

    Raises:
        ConfigError: If the file does not exist, contains invalid JSON, or
            fails Pydantic validation.
    """
    path = _connector_path(name)
    if not path.is_file():
        raise ConfigError(f"Connector '{name}' not found at {path}")
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return OpenIdConnectorConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid connector '{name}' at {path}: {exc}") from exc


def save_connector_config(config: OpenIdConnectorConfig) -> None:
    """Persist a connector configuration atomically with ``0o600`` permissions.

    The file only holds the client secret's *source* descriptor, but it is
    still written owner-readable only since ``value:`` sources embed the
    secret itself.

    Args:
        config: The connector to save. The file name is derived from
            ``config.name``.
    """
    data = config.model_dump(mode="json")
    _atomic_write(
        _connector_path(config.name), json.dumps(data, indent=2) + "\n", mode=0o600
    )


def delete_connector_config(name: str) -> None:
    """Delete a connector's JSON file from disk.

    Args:
        name: Connector name to delete.

    Raises:
        ConfigError: If the connector does not exist.
    """
    path = _connector_path(name)
    if not path.is_file():
        raise ConfigError(f"Connector '{name}' not found at {path}")
    path.unlink()


def connector_config_exists(name: str) -> bool:
    """Check whether a connector file exists on disk."""
    return _connector_path(name).is_file()


# --- Precedence resolution ---


def resolve_config(cli_server_url: Optional[str] = None) -> GlobalConfig:
    """Resolve the global config with the full precedence chain.

    Precedence (high to low):
        1. CLI flag (``cli_server_url``)
        2. Environment variable (``SSOCONNECT_SERVER_URL``)
        3. User config (``~/.config/ssoconnect/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~ssoconnect.models.GlobalConfig`.
    """
    config = load_global_config()

    env_server_url = os.environ.get(_SERVER_URL_ENV)
    if cli_server_url is not None:
        config.server_url = cli_server_url
    elif env_server_url:
        config.server_url = env_server_url

    return config


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)
        - ``"value:SECRET"`` -- the literal text after the prefix

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        file_path = source[5:]
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter client secret: ")

    if source.startswith("value:"):
        return source[6:]

    raise ConfigError(f"Unknown credential source format: {source}")


# --- HTTP client ---


def create_http_client(request: Optional[RequestConfig] = None) -> httpx.Client:
    """Build the HTTP client used for discovery, token and user-info calls.

    Redirects are not followed: every provider endpoint is used exactly as
    advertised by the discovery document.

    Args:
        request: HTTP settings; defaults to :class:`~ssoconnect.models.RequestConfig`.

    Returns:
        A new :class:`httpx.Client`. The caller owns it and must close it.
    """
    request = request or RequestConfig()
    return httpx.Client(
        timeout=request.timeout,
        verify=request.verify_ssl,
        follow_redirects=False,
    )
