"""Authorization request construction for the OpenID Connect code flow.

Builds the URL the browser is sent to, together with the fresh ``state``
and ``nonce`` values of the attempt.
"""

from __future__ import annotations

import secrets
from typing import NamedTuple, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ssoconnect.models import ProviderMetadata

STATE_PREFIX = "OIDC-"

BASE_SCOPES = ("openid", "email", "profile")


class AuthorizationRequest(NamedTuple):
    """The authorization URL and the random values embedded in it."""

    url: str
    state: str
    nonce: str


def generate_state() -> str:
    """Return a fresh, unguessable anti-replay state token."""
    return STATE_PREFIX + secrets.token_urlsafe(32)


def generate_nonce() -> str:
    return secrets.token_urlsafe(32)


def build_scopes(groups_claim: Optional[str] = None) -> str:
    """Return the space-separated scope string for the authorization request.

    The groups claim name is requested as an extra scope when configured,
    since many providers only release it when asked for by name.

    Example::

        >>> build_scopes("groups")
        'openid email profile groups'
    """
    scopes = list(BASE_SCOPES)
    if groups_claim:
        scopes.append(groups_claim)
    return " ".join(scopes)


def build_redirect(
    client_id: str,
    scopes: str,
    callback_url: str,
    metadata: ProviderMetadata,
) -> AuthorizationRequest:
    """Build the authorization request for one login attempt.

    Query parameters already present on the authorization endpoint are kept;
    the flow parameters are appended after them.

    Args:
        client_id: Client id assigned by the provider.
        scopes: Space-separated scopes, see :func:`build_scopes`.
        callback_url: Redirect URI registered with the provider.
        metadata: Discovered provider metadata.

    Returns:
        An :class:`AuthorizationRequest` with the full URL, ``state`` and
        ``nonce``.
    """
    state = generate_state()
    nonce = generate_nonce()

    parts = urlsplit(metadata.authorization_endpoint)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(
        [
            ("response_type", "code"),
            ("scope", scopes),
            ("client_id", client_id),
            ("redirect_uri", callback_url),
            ("state", state),
            ("nonce", nonce),
        ]
    )
    url = urlunsplit(parts._replace(query=urlencode(query)))
    return AuthorizationRequest(url=url, state=state, nonce=nonce)
