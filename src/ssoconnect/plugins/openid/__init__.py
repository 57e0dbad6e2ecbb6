"""OpenID Connect SSO connector.

Implements the ``openid`` connector type: provider discovery
(``/.well-known/openid-configuration``), the authorization request, and
callback processing through the authorization code flow.

See Also:
    :class:`~ssoconnect.plugins.openid.plugin.OpenIdConnector`
    :mod:`ssoconnect.plugins.openid.callback` for the callback state machine.
    :mod:`ssoconnect.sso.base` for the connector interface contract.
"""

from ssoconnect.plugins.openid.plugin import OpenIdConnector

__all__ = ["OpenIdConnector"]
