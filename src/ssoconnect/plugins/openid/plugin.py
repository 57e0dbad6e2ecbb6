"""OpenID Connect SSO connector.

This module provides :class:`OpenIdConnector`, the ``openid`` connector
type. Login initiation discovers the provider's endpoints, records a
:class:`~ssoconnect.models.LoginAttempt` in the browser's login session and
redirects to the authorization endpoint. The provider's callback is handed
to :class:`~ssoconnect.plugins.openid.callback.CallbackFlow`, which
exchanges the code, validates the ID token and assembles the identity.

See Also:
    :class:`ssoconnect.sso.base.SsoConnector` for the base interface.
"""

from __future__ import annotations

import logging
from typing import Optional, Union
from urllib.parse import urlsplit

import httpx

from ssoconnect.config import create_http_client, resolve_credential
from ssoconnect.exceptions import ConfigError, DiscoveryError
from ssoconnect.models import (
    LoginAttempt,
    LoginFailure,
    LoginResult,
    OpenIdConnectorConfig,
    ProviderMetadata,
    Redirect,
)
from ssoconnect.plugins.openid.authorization import build_redirect, build_scopes
from ssoconnect.plugins.openid.callback import CallbackFlow, Clock, utc_now
from ssoconnect.plugins.openid.discovery import discover
from ssoconnect.sso.base import SsoConnector, build_callback_url
from ssoconnect.sso.session import LoginSession

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")

_SECRET_SOURCE_PREFIXES = ("env:", "file:", "value:")


class OpenIdConnector(SsoConnector):
    """Single sign-on through an OpenID Connect provider.

    Args:
        config: Connector settings.
        server_url: Base URL of the web tier; the callback URL is derived
            from it.
        http_client: Client for provider requests. When ``None`` the
            connector creates its own and closes it in :meth:`close`.
        clock: Current-time source used for ID token checks.
    """

    def __init__(
        self,
        config: OpenIdConnectorConfig,
        server_url: str,
        http_client: Optional[httpx.Client] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._server_url = server_url
        self._owns_client = http_client is None
        self._http_client = http_client
        self._clock = clock

    @property
    def http_client(self) -> httpx.Client:
        """The provider HTTP client, created on first use when none was injected."""
        if self._http_client is None:
            self._http_client = create_http_client()
        return self._http_client

    @property
    def connector_type(self) -> str:
        return "openid"

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> OpenIdConnectorConfig:
        return self._config

    @property
    def callback_url(self) -> str:
        return build_callback_url(self._server_url, self._config.name)

    @property
    def button_image_url(self) -> str:
        return self._config.button_image_url

    @property
    def is_managing_memberships(self) -> bool:
        """Group memberships come from the provider when a groups claim is configured."""
        return self._config.groups_claim is not None

    def validate_config(self) -> list[str]:
        """Validate issuer URL, client id and client secret source.

        The issuer must be an absolute ``https`` URL; plain ``http`` is
        accepted only for loopback hosts.

        Returns:
            A list of human-readable error strings. Empty if valid.
        """
        errors: list[str] = []
        issuer = urlsplit(self._config.issuer_url)
        if issuer.scheme not in ("http", "https") or not issuer.hostname:
            errors.append(
                f"OpenID connector requires an absolute issuer URL, got "
                f"'{self._config.issuer_url}'"
            )
        elif issuer.scheme == "http" and issuer.hostname not in _LOCAL_HOSTS:
            errors.append("OpenID issuer URL must use https outside of localhost")
        if not self._config.client_id.strip():
            errors.append("OpenID connector requires 'client_id'")
        source = self._config.client_secret_source
        if source != "prompt" and not source.startswith(_SECRET_SOURCE_PREFIXES):
            errors.append(
                f"Unknown client secret source '{source}' "
                "(expected env:VAR, file:/path, prompt or value:SECRET)"
            )
        return errors

    def discover_provider_metadata(self) -> ProviderMetadata:
        """Fetch the provider's endpoints from its discovery document.

        Raises:
            DiscoveryError: If the document cannot be fetched or parsed.
        """
        return discover(self._config.issuer_url, self.http_client)

    def initiate_login(self, session: LoginSession) -> Union[Redirect, LoginFailure]:
        """Discover the provider, record the attempt and build the redirect.

        Any attempt already stored in *session* is replaced, so only the
        most recent login in a browser session can complete.
        """
        try:
            metadata = self.discover_provider_metadata()
        except DiscoveryError as exc:
            logger.warning("Cannot start OIDC login via '%s': %s", self.name, exc)
            return exc.to_failure()

        request = build_redirect(
            self._config.client_id,
            build_scopes(self._config.groups_claim),
            self.callback_url,
            metadata,
        )
        session.store_attempt(LoginAttempt(state=request.state, metadata=metadata))
        logger.debug(
            "Redirecting to authorization endpoint of '%s': %s",
            self.name,
            metadata.authorization_endpoint,
        )
        return Redirect(url=request.url)

    def process_callback(self, session: LoginSession, callback_url: str) -> LoginResult:
        """Run the callback flow for *callback_url*.

        Raises:
            ConfigError: If the client secret cannot be resolved. The login
                attempt is cleared from the session first.
            ConnectionError_: If a provider endpoint cannot be reached.
            ResponseParseError: If a provider response is malformed.
        """
        try:
            client_secret = resolve_credential(self._config.client_secret_source)
        except ConfigError:
            session.clear()
            raise

        flow = CallbackFlow(
            connector_name=self.name,
            client_id=self._config.client_id,
            client_secret=client_secret,
            redirect_uri=self.callback_url,
            http_client=self.http_client,
            groups_claim=self._config.groups_claim,
            clock=self._clock,
        )
        return flow.run(session, callback_url)

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None
