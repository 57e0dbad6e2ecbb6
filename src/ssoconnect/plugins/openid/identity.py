"""Normalization of user-info claims into an authenticated identity."""

from __future__ import annotations

from typing import Any, Optional

from ssoconnect.exceptions import MissingEmailClaimError
from ssoconnect.models import AuthenticatedIdentity


def first_string(value: Any) -> Optional[str]:
    """Return *value* if it is a string, or the first element of a list of strings.

    Providers disagree on whether single-valued claims are strings or
    one-element arrays; every claim read goes through this helper.

    Example::

        >>> first_string(["jane@example.com", "j@example.com"])
        'jane@example.com'
        >>> first_string(42) is None
        True
    """
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value and isinstance(value[0], str):
        return value[0]
    return None


def derive_username(preferred_username: Optional[str], email: str, subject: str) -> str:
    """Return the local username: the part before the first ``@``.

    ``preferred_username`` wins over ``email``. When the result would be
    empty (e.g. ``"@example.com"``) the subject is used instead.
    """
    if preferred_username and preferred_username.strip():
        candidate = preferred_username
    else:
        candidate = email
    username = candidate.split("@", 1)[0].strip()
    return username or subject


def extract_groups(userinfo: dict[str, Any], groups_claim: Optional[str]) -> Optional[list[str]]:
    """Read group names from *groups_claim*.

    Returns:
        ``None`` when no claim is configured, ``[]`` when it is configured
        but missing. A single string is one group; non-string entries are
        dropped.
    """
    if not groups_claim:
        return None
    value = userinfo.get(groups_claim)
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


def assemble(
    subject: str,
    userinfo: dict[str, Any],
    groups_claim: Optional[str],
    connector: str,
) -> AuthenticatedIdentity:
    """Build the :class:`~ssoconnect.models.AuthenticatedIdentity` for a user.

    Args:
        subject: Validated ``sub`` of the ID token.
        userinfo: User-info response whose ``sub`` already matched *subject*.
        groups_claim: Configured groups claim name, if any.
        connector: Name of the connector producing the identity.

    Raises:
        MissingEmailClaimError: If ``email`` is absent or blank.
    """
    email = first_string(userinfo.get("email"))
    if email is None or not email.strip():
        raise MissingEmailClaimError()

    username = derive_username(
        first_string(userinfo.get("preferred_username")), email, subject
    )
    full_name = first_string(userinfo.get("name")) or ""

    return AuthenticatedIdentity(
        username=username,
        email=email,
        full_name=full_name,
        group_names=extract_groups(userinfo, groups_claim),
        connector=connector,
    )
