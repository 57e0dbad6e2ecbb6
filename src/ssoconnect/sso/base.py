"""Abstract base class for single-sign-on connectors.

This module defines the capability interface every SSO connector exposes to
the web tier:

- :meth:`SsoConnector.initiate_login` -- start an attempt and tell the
  caller where to send the browser.
- :meth:`SsoConnector.process_callback` -- consume the provider's redirect
  back to :attr:`SsoConnector.callback_url` and produce a
  :class:`~ssoconnect.models.LoginResult`.

It also fixes the callback URL shape shared by all connectors::

    <server_url>/~sso/callback/<connector name>

See Also:
    :mod:`ssoconnect.sso.manager` for connector registration and callback
    dispatch.
    :class:`~ssoconnect.plugins.openid.plugin.OpenIdConnector` for the
    OpenID Connect implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Union

from ssoconnect.models import LoginFailure, LoginResult, Redirect
from ssoconnect.sso.session import LoginSession

SSO_MOUNT_PATH = "~sso"
STAGE_LOGIN = "login"
STAGE_CALLBACK = "callback"


def build_callback_url(server_url: str, connector_name: str) -> str:
    """Return the callback URL for *connector_name* under *server_url*.

    Example::

        >>> build_callback_url("https://git.example.com/", "okta")
        'https://git.example.com/~sso/callback/okta'
    """
    return "/".join(
        [server_url.rstrip("/"), SSO_MOUNT_PATH, STAGE_CALLBACK, connector_name]
    )


class SsoConnector(ABC):
    """Abstract base class for SSO connectors.

    Every concrete connector must provide:

    1. A :attr:`connector_type` identifying the protocol (e.g. ``"openid"``).
    2. A :attr:`name`, unique among configured connectors and URL-safe,
       since it is the last segment of :attr:`callback_url`.
    3. :meth:`initiate_login` and :meth:`process_callback`.

    Connectors are registered with
    :class:`~ssoconnect.sso.manager.ConnectorManager` and looked up by name
    at runtime.
    """

    @property
    @abstractmethod
    def connector_type(self) -> str:
        """Return the protocol identifier of this connector (e.g. ``"openid"``)."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the configured connector name."""
        ...

    @property
    @abstractmethod
    def callback_url(self) -> str:
        """Return the absolute URL the provider must redirect the browser to."""
        ...

    @property
    def is_managing_memberships(self) -> bool:
        """Whether identities from this connector carry authoritative group names.

        Defaults to ``False``: group membership stays with the local
        membership system.
        """
        return False

    @abstractmethod
    def initiate_login(self, session: LoginSession) -> Union[Redirect, LoginFailure]:
        """Start a login attempt for the browser session behind *session*.

        Implementations record whatever they need to validate the callback
        in *session* before returning.

        Args:
            session: The login state of the current browser session.

        Returns:
            A :class:`~ssoconnect.models.Redirect` the caller must send the
            browser to, or a :class:`~ssoconnect.models.LoginFailure` when
            the attempt cannot be started.
        """
        ...

    @abstractmethod
    def process_callback(self, session: LoginSession, callback_url: str) -> LoginResult:
        """Consume the provider's redirect back to :attr:`callback_url`.

        Args:
            session: The login state of the browser session that made the
                callback request.
            callback_url: The callback request URL, at least path and query
                string.

        Returns:
            A :class:`~ssoconnect.models.LoginResult` holding either the
            authenticated identity or the reason the login failed.

        Raises:
            ConnectionError_: If a provider endpoint cannot be reached.
            ResponseParseError: If a provider response is malformed.
        """
        ...

    def validate_config(self) -> list[str]:
        """Validate the connector configuration before use.

        Returns:
            A list of human-readable error strings. Empty if valid.
        """
        return []

    def close(self) -> None:
        """Release resources held by the connector. The default does nothing."""
