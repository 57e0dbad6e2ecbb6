"""Per-browser-session storage of the in-flight login attempt.

A login attempt spans two unrelated HTTP requests: the one that redirects
the browser to the provider and the provider's redirect back. The only
thing connecting them is the browser's session, in which the connector
keeps a :class:`~ssoconnect.models.LoginAttempt` (anti-replay state token
plus the discovered provider metadata).

The lifecycle is fixed:

1. :meth:`LoginSession.store_attempt` before the redirect. Overwrites any
   earlier attempt, so the most recent login wins.
2. :meth:`LoginSession.load_attempt` when the callback arrives.
3. :meth:`LoginSession.invalidate_state` once the state token matched, so
   the same callback cannot be replayed.
4. :meth:`LoginSession.clear` when the callback reaches a terminal state,
   whatever the outcome.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from typing import Any, Optional

from pydantic import ValidationError

from ssoconnect.models import LoginAttempt

logger = logging.getLogger(__name__)

LOGIN_ATTEMPT_KEY = "ssoconnect.login_attempt"


class LoginSession(ABC):
    """Login-attempt storage bound to one browser session."""

    @abstractmethod
    def store_attempt(self, attempt: LoginAttempt) -> None:
        """Record *attempt*, replacing any attempt already stored."""
        ...

    @abstractmethod
    def load_attempt(self) -> Optional[LoginAttempt]:
        """Return the stored attempt, or ``None`` if there is none."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Forget the stored attempt. A no-op when nothing is stored."""
        ...

    def invalidate_state(self) -> None:
        """Consume the state token while keeping the provider metadata."""
        attempt = self.load_attempt()
        if attempt is not None and attempt.state is not None:
            self.store_attempt(attempt.model_copy(update={"state": None}))


class MappingLoginSession(LoginSession):
    """Store the attempt in a mutable mapping such as a web framework's session.

    The attempt is kept as JSON-compatible data under a single key, so any
    session backend that can hold a dict of strings works (signed cookies,
    server-side stores).

    Args:
        mapping: The session mapping to write into.
        key: Mapping key holding the attempt.

    Example::

        session = MappingLoginSession(request.session)
        outcome = connector.initiate_login(session)
    """

    def __init__(
        self, mapping: MutableMapping[str, Any], key: str = LOGIN_ATTEMPT_KEY
    ) -> None:
        self._mapping = mapping
        self._key = key

    def store_attempt(self, attempt: LoginAttempt) -> None:
        self._mapping[self._key] = attempt.model_dump(mode="json")

    def load_attempt(self) -> Optional[LoginAttempt]:
        data = self._mapping.get(self._key)
        if data is None:
            return None
        try:
            return LoginAttempt.model_validate(data)
        except ValidationError as exc:
            # Unreadable attempts are treated as absent, so the callback is rejected.
            logger.warning("Discarding unreadable login attempt in session: %s", exc)
            return None

    def clear(self) -> None:
        self._mapping.pop(self._key, None)


class InMemoryLoginSession(MappingLoginSession):
    """A :class:`MappingLoginSession` backed by its own private dict."""

    def __init__(self) -> None:
        super().__init__({})
