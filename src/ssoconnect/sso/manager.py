"""Connector manager -- registry and callback dispatcher for SSO connectors.

The :class:`ConnectorManager` maps connector names to concrete
:class:`~ssoconnect.sso.base.SsoConnector` instances. Several connectors
share one callback prefix (``<server_url>/~sso/callback/``); the manager
routes each callback to its owner using the final path segment.

For most use cases, call :func:`create_default_manager` to get a manager
pre-loaded with every connector saved in the config directory.

See Also:
    :class:`~ssoconnect.sso.base.SsoConnector` -- the connector interface.
"""

from __future__ import annotations

import logging
from typing import Optional, Union
from urllib.parse import unquote, urlsplit

import httpx

from ssoconnect.exceptions import NotFoundError, UnsolicitedResponseError
from ssoconnect.models import GlobalConfig, LoginFailure, LoginResult, Redirect
from ssoconnect.sso.base import SSO_MOUNT_PATH, STAGE_CALLBACK, SsoConnector
from ssoconnect.sso.session import LoginSession

logger = logging.getLogger(__name__)


def connector_name_from_callback(callback_url: str) -> Optional[str]:
    """Extract the connector name from a ``.../~sso/callback/<name>`` URL.

    Returns:
        The decoded connector name, or ``None`` if the URL does not have the
        callback shape.
    """
    segments = urlsplit(callback_url).path.rstrip("/").split("/")
    if len(segments) < 3:
        return None
    mount, stage, name = segments[-3:]
    if mount != SSO_MOUNT_PATH or stage != STAGE_CALLBACK or not name:
        return None
    return unquote(name)


class ConnectorManager:
    """Registry and dispatcher for SSO connectors.

    Connectors are registered by their :attr:`~SsoConnector.name`. The
    manager optionally owns an :class:`httpx.Client` shared by its
    connectors and closes it in :meth:`close`.

    Example::

        manager = ConnectorManager()
        manager.register(OpenIdConnector(config, server_url, http_client=client))
        redirect = manager.initiate_login("okta", session)
        ...
        result = manager.dispatch_callback(session, request_url)
    """

    def __init__(self, http_client: Optional[httpx.Client] = None) -> None:
        self._connectors: dict[str, SsoConnector] = {}
        self._http_client = http_client

    def register(self, connector: SsoConnector) -> None:
        """Register a connector, keyed by its :attr:`~SsoConnector.name`.

        If a connector with the same name is already registered it is
        replaced.
        """
        self._connectors[connector.name] = connector

    def get_connector(self, name: str) -> SsoConnector:
        """Retrieve a registered connector by name.

        Raises:
            NotFoundError: If no connector is registered under *name*.
        """
        connector = self._connectors.get(name)
        if connector is None:
            available = ", ".join(sorted(self._connectors)) or "(none)"
            raise NotFoundError(
                f"No SSO connector named '{name}'. Available connectors: {available}"
            )
        return connector

    def list_names(self) -> list[str]:
        """Return the names of all registered connectors, sorted."""
        return sorted(self._connectors)

    def initiate_login(
        self, name: str, session: LoginSession
    ) -> Union[Redirect, LoginFailure]:
        """Start a login attempt with the connector called *name*."""
        return self.get_connector(name).initiate_login(session)

    def dispatch_callback(self, session: LoginSession, callback_url: str) -> LoginResult:
        """Route a callback request to the connector named in its path.

        A callback that does not name a registered connector has no
        matching in-flight attempt and fails as unsolicited; the session's
        login attempt is cleared in that case too.
        """
        name = connector_name_from_callback(callback_url)
        connector = self._connectors.get(name) if name is not None else None
        if connector is None:
            logger.warning("Rejecting SSO callback for unknown connector: %s", name)
            session.clear()
            return LoginResult.failed(UnsolicitedResponseError().to_failure())
        return connector.process_callback(session, callback_url)

    def close(self) -> None:
        """Close every registered connector and the shared HTTP client."""
        for connector in self._connectors.values():
            connector.close()
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> ConnectorManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def create_default_manager(
    config: GlobalConfig, http_client: Optional[httpx.Client] = None
) -> ConnectorManager:
    """Create a :class:`ConnectorManager` holding every saved connector.

    Each connector file in the config directory becomes an
    :class:`~ssoconnect.plugins.openid.plugin.OpenIdConnector` whose
    callback URL is rooted at ``config.server_url``.

    Args:
        config: The effective global configuration.
        http_client: Client shared by all connectors. When ``None``, one is
            built from ``config.request`` and owned by the manager.

    Returns:
        A fully initialised :class:`ConnectorManager`.

    Raises:
        ConfigError: If a saved connector file is invalid.
    """
    from ssoconnect.config import (
        create_http_client,
        list_connector_configs,
        load_connector_config,
    )
    from ssoconnect.plugins.openid import OpenIdConnector

    owned_client = http_client is None
    client = http_client or create_http_client(config.request)
    manager = ConnectorManager(http_client=client if owned_client else None)
    for name in list_connector_configs():
        manager.register(
            OpenIdConnector(
                load_connector_config(name), config.server_url, http_client=client
            )
        )
    return manager
