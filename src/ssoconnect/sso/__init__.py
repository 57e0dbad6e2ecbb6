"""Connector-based single-sign-on framework for ssoconnect.

This package defines the boundary between the web tier and the SSO
protocols: the connector interface, the per-browser-session login state,
and a registry that routes callbacks to connectors.

The main entry points are:

- :class:`SsoConnector` -- abstract base class for SSO protocol connectors.
- :class:`ConnectorManager` -- registry that maps connector names to
  instances and dispatches provider callbacks.
- :func:`create_default_manager` -- factory that returns a
  :class:`ConnectorManager` pre-loaded with every saved connector.
- :class:`LoginSession` -- storage of the in-flight login attempt.

Typical usage::

    from ssoconnect.sso import MappingLoginSession, create_default_manager

    manager = create_default_manager(config)
    session = MappingLoginSession(request.session)
    outcome = manager.initiate_login("okta", session)   # -> Redirect
    ...
    result = manager.dispatch_callback(session, str(request.url))
    identity = result.raise_for_failure()
"""

from ssoconnect.sso.base import SsoConnector, build_callback_url
from ssoconnect.sso.manager import ConnectorManager, create_default_manager
from ssoconnect.sso.session import (
    InMemoryLoginSession,
    LoginSession,
    MappingLoginSession,
)

__all__ = [
    "ConnectorManager",
    "InMemoryLoginSession",
    "LoginSession",
    "MappingLoginSession",
    "SsoConnector",
    "build_callback_url",
    "create_default_manager",
]
