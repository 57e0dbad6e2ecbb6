"""Exception hierarchy for ssoconnect.

All exceptions inherit from :class:`SsoConnectError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`ssoconnect.exit_codes`.
The top-level error handler in :func:`ssoconnect.app.main` catches
``SsoConnectError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Every named way a login attempt can fail has its own
:class:`LoginFailedError` subclass tagged with a
:class:`~ssoconnect.models.FailureKind`. The OpenID connector raises them
internally and converts them into a :class:`~ssoconnect.models.LoginResult`
at its public boundary; :meth:`~ssoconnect.models.LoginResult.raise_for_failure`
converts back.

Subclass hierarchy::

    SsoConnectError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- AuthError                (exit 3)
    |   +-- LoginFailedError
    |       +-- DiscoveryError
    |       +-- ProviderError
    |       +-- UnsolicitedResponseError
    |       +-- TokenExchangeError
    |       +-- IssuerMismatchError
    |       +-- InvalidIssueTimeError
    |       +-- TokenExpiredError
    |       +-- UserInfoError
    |       +-- SubjectMismatchError
    |       +-- MissingEmailClaimError
    +-- NotFoundError            (exit 4)
    +-- ConnectionError_         (exit 6)
    +-- ResponseParseError       (exit 7)
    +-- ConfigError              (exit 1)
"""

from __future__ import annotations

from typing import Optional

from ssoconnect.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_RESPONSE_PARSE_ERROR,
)
from ssoconnect.models import FailureKind, LoginFailure


class SsoConnectError(Exception):
    """Base exception for all ssoconnect errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`ssoconnect.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(SsoConnectError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(SsoConnectError):
    """Raised when authentication fails."""

    exit_code = EXIT_AUTH_FAILURE


class LoginFailedError(AuthError):
    """A login attempt reached the terminal ``failed`` state.

    Subclasses pin :attr:`kind` and a :attr:`default_message` used when
    the provider supplied no description of its own.

    Args:
        message: Human-readable failure message. Defaults to the
            subclass's :attr:`default_message`.
        error_code: Provider-supplied OAuth error code, if any
            (e.g. ``"access_denied"``, ``"invalid_grant"``).
        error_description: Provider-supplied error description, if any.
    """

    kind: FailureKind = FailureKind.PROVIDER_ERROR
    default_message: str = "Login failed"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        error_description: Optional[str] = None,
    ):
        super().__init__(message or self.default_message)
        self.error_code = error_code
        self.error_description = error_description

    @classmethod
    def from_error_object(
        cls,
        error_code: Optional[str],
        error_description: Optional[str],
        status_code: Optional[int] = None,
    ) -> LoginFailedError:
        """Build the error from a provider error object.

        The message is the provider's description when present, otherwise
        its error code, otherwise the fixed message for this kind (with the
        HTTP status appended when known).
        """
        fallback = cls.default_message
        if status_code is not None:
            fallback = f"{fallback} (HTTP {status_code})"
        message = error_description or error_code or fallback
        return cls(message, error_code=error_code, error_description=error_description)

    def to_failure(self) -> LoginFailure:
        """Describe this error as a :class:`~ssoconnect.models.LoginFailure` value."""
        return LoginFailure(
            kind=self.kind,
            message=str(self),
            error_code=self.error_code,
            error_description=self.error_description,
        )


class DiscoveryError(LoginFailedError):
    """The provider's discovery document could not be fetched or parsed."""

    kind = FailureKind.DISCOVERY_ERROR
    default_message = "Network failure while discovering OpenID provider metadata"


class ProviderError(LoginFailedError):
    """The provider answered the authorization request with an error response."""

    kind = FailureKind.PROVIDER_ERROR
    default_message = "OpenID provider returned an error response"


class UnsolicitedResponseError(LoginFailedError):
    """The callback does not belong to an in-flight login attempt."""

    kind = FailureKind.UNSOLICITED_RESPONSE
    default_message = "Unsolicited OIDC authentication response"


class TokenExchangeError(LoginFailedError):
    """The token endpoint rejected the authorization code."""

    kind = FailureKind.TOKEN_EXCHANGE_ERROR
    default_message = "OpenID provider rejected the token request"


class IssuerMismatchError(LoginFailedError):
    """The ID token was issued by a different issuer than the one discovered."""

    kind = FailureKind.ISSUER_MISMATCH
    default_message = "Inconsistent issuer in provider metadata and ID token"


class InvalidIssueTimeError(LoginFailedError):
    """The ID token claims to have been issued in the future."""

    kind = FailureKind.INVALID_ISSUE_TIME
    default_message = "Invalid issue date of ID token"


class TokenExpiredError(LoginFailedError):
    """The ID token's expiration time has passed."""

    kind = FailureKind.TOKEN_EXPIRED
    default_message = "ID token was expired"


class UserInfoError(LoginFailedError):
    """The user-info endpoint returned an error response."""

    kind = FailureKind.USER_INFO_ERROR
    default_message = "OpenID provider rejected the user info request"


class SubjectMismatchError(LoginFailedError):
    """The user-info ``sub`` claim differs from the ID token subject."""

    kind = FailureKind.SUBJECT_MISMATCH
    default_message = "Inconsistent sub in ID token and userinfo"


class MissingEmailClaimError(LoginFailedError):
    """The user-info response carried no usable ``email`` claim."""

    kind = FailureKind.MISSING_EMAIL_CLAIM
    default_message = "No email claim returned"


_ERRORS_BY_KIND: dict[FailureKind, type[LoginFailedError]] = {
    cls.kind: cls
    for cls in (
        DiscoveryError,
        ProviderError,
        UnsolicitedResponseError,
        TokenExchangeError,
        IssuerMismatchError,
        InvalidIssueTimeError,
        TokenExpiredError,
        UserInfoError,
        SubjectMismatchError,
        MissingEmailClaimError,
    )
}


def error_class_for(kind: FailureKind) -> type[LoginFailedError]:
    """Return the :class:`LoginFailedError` subclass registered for *kind*."""
    return _ERRORS_BY_KIND[kind]


class NotFoundError(SsoConnectError):
    """Raised when a named connector is not configured or not registered."""

    exit_code = EXIT_NOT_FOUND


class ConnectionError_(SsoConnectError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``. The original transport exception is chained as
    ``__cause__``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class ResponseParseError(SsoConnectError):
    """Raised when a provider response or callback URL is malformed.

    Covers non-JSON token responses, token responses missing
    ``access_token`` / ``id_token``, undecodable ID tokens and callbacks
    without an authorization code.
    """

    exit_code = EXIT_RESPONSE_PARSE_ERROR


class ConfigError(SsoConnectError):
    """Raised for configuration problems (missing connectors, invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE
