"""OpenID provider metadata discovery.

Fetches ``<issuer>/.well-known/openid-configuration`` and keeps the four
endpoints the authorization code flow needs. Discovery runs once per login
attempt; the result travels with the attempt in the login session and is
never cached across attempts.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

import httpx

from ssoconnect.exceptions import DiscoveryError
from ssoconnect.models import ProviderMetadata

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"

REQUIRED_FIELDS = (
    "issuer",
    "authorization_endpoint",
    "token_endpoint",
    "userinfo_endpoint",
)

ENDPOINT_FIELDS = REQUIRED_FIELDS[1:]


def discovery_url(issuer_url: str) -> str:
    """Return the discovery document URL for *issuer_url*.

    Example::

        >>> discovery_url("https://idp.test/")
        'https://idp.test/.well-known/openid-configuration'
    """
    return issuer_url.rstrip("/") + WELL_KNOWN_PATH


def _is_absolute_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def parse_metadata(doc: Any) -> ProviderMetadata:
    """Extract :class:`~ssoconnect.models.ProviderMetadata` from a discovery document.

    Fields other than the four required endpoints are ignored.

    Raises:
        DiscoveryError: If *doc* is not a JSON object, a required field is
            missing, blank or not a string, or an endpoint is not an absolute
            http(s) URL.
    """
    if not isinstance(doc, dict):
        raise DiscoveryError("OpenID discovery document is not a JSON object")
    values: dict[str, str] = {}
    for field in REQUIRED_FIELDS:
        value = doc.get(field)
        if not isinstance(value, str) or not value.strip():
            raise DiscoveryError(f"OpenID discovery document missing '{field}'")
        if field in ENDPOINT_FIELDS and not _is_absolute_url(value):
            raise DiscoveryError(f"OpenID discovery document has non-absolute '{field}'")
        values[field] = value
    return ProviderMetadata(**values)


def discover(issuer_url: str, http_client: httpx.Client) -> ProviderMetadata:
    """Fetch and parse the provider's discovery document.

    Args:
        issuer_url: Issuer URL of the OpenID provider. Trailing slashes are
            ignored.
        http_client: Client used for the request. Its timeout bounds the
            call.

    Returns:
        The provider's issuer and endpoints.

    Raises:
        DiscoveryError: On transport failures, non-2xx responses, bodies
            that are not JSON and documents missing a required field.
    """
    url = discovery_url(issuer_url)
    try:
        response = http_client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
        doc = response.json()
        return parse_metadata(doc)
    except httpx.HTTPStatusError as exc:
        logger.error("Error discovering OpenID provider metadata at %s", url, exc_info=True)
        raise DiscoveryError(
            f"OpenID discovery failed with status {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("Error discovering OpenID provider metadata at %s", url, exc_info=True)
        raise DiscoveryError(str(exc) or None) from exc
    except ValueError as exc:
        logger.error("Error discovering OpenID provider metadata at %s", url, exc_info=True)
        raise DiscoveryError(f"OpenID discovery document is not valid JSON: {exc}") from exc
    except DiscoveryError:
        logger.error("Error discovering OpenID provider metadata at %s", url, exc_info=True)
        raise
