"""Canonical Pydantic models shared across all ssoconnect modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`OpenIdConnectorConfig`, :class:`RequestConfig`,
    :class:`OutputConfig` and :class:`GlobalConfig`.

**Login flow models** -- produced and consumed while one login attempt is
driven through the OpenID Connect authorization code flow:
    :class:`ProviderMetadata`, :class:`LoginAttempt`, :class:`TokenSet`,
    :class:`IdTokenClaims`, :class:`AuthenticatedIdentity`,
    :class:`FailureKind`, :class:`LoginFailure`, :class:`Redirect`,
    :class:`LoginResult` and :class:`FlowState`.

All models use Pydantic v2. Values that must not change once created
(provider metadata, the login attempt record, the final identity) are
declared ``frozen``.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from ssoconnect.exceptions import LoginFailedError


# --- Configuration ---


DEFAULT_BUTTON_IMAGE_URL = "https://openid.net/images/logo/openid-icon-100x100.png"

URL_SEGMENT_PATTERN = r"^[A-Za-z0-9._~-]+$"


class OpenIdConnectorConfig(BaseModel):
    """Settings for one OpenID Connect connector.

    Stored as ``connectors/<name>.json`` under the config directory and
    managed with ``ssoconnect connector``. The connector name is also the
    last path segment of the callback URL, so it must be URL-safe.

    Example::

        OpenIdConnectorConfig(
            name="okta",
            issuer_url="https://dev-123.okta.com",
            client_id="0oa1b2c3",
            client_secret_source="env:OKTA_CLIENT_SECRET",
            groups_claim="groups",
        )
    """

    name: str = Field(
        pattern=URL_SEGMENT_PATTERN,
        description="Connector name, shown on the login button and used in the callback URL",
    )
    issuer_url: str = Field(
        description="Issuer URL of the OpenID provider; discovery URL is derived from it"
    )
    client_id: str = Field(description="Client id assigned by the OpenID provider")
    client_secret_source: str = Field(
        description="Credential source for the client secret: env:VAR, file:/path, "
        "prompt, or value:SECRET"
    )
    groups_claim: Optional[str] = Field(
        default=None,
        description="Claim carrying the user's groups; unset means memberships "
        "are not managed by this connector",
    )
    button_image_url: str = Field(
        default=DEFAULT_BUTTON_IMAGE_URL, description="Image shown on the login button"
    )


class RequestConfig(BaseModel):
    """HTTP settings for calls to OpenID providers."""

    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`GlobalConfig`."""

    format: Literal["auto", "json", "plain", "rich"] = Field(
        default="auto", description="Output format: auto, json, plain, rich"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/ssoconnect/config.json``.

    ``server_url`` is the externally visible base URL of the web tier that
    hosts the SSO callback page; every connector's callback URL is derived
    from it. See :func:`~ssoconnect.config.resolve_config` for the
    precedence chain.
    """

    server_url: str = Field(
        default="http://localhost:8080",
        description="Base URL the browser uses to reach the SSO callback page",
    )
    request: RequestConfig = Field(default_factory=RequestConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


# --- Login flow ---


class ProviderMetadata(BaseModel):
    """The subset of an OpenID discovery document this connector relies on.

    ``issuer`` must later match the ``iss`` claim of the ID token exactly.
    """

    model_config = ConfigDict(frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str


class LoginAttempt(BaseModel):
    """Per-browser-session record of one in-flight login attempt.

    Written before the browser is redirected to the provider and read back
    when the callback arrives. ``state`` is ``None`` once it has been
    consumed by a callback.
    """

    model_config = ConfigDict(frozen=True)

    state: Optional[str]
    metadata: ProviderMetadata


class TokenSet(BaseModel):
    """Tokens returned by a successful authorization code exchange."""

    access_token: str
    id_token: str
    token_type: str = "Bearer"


class IdTokenClaims(BaseModel):
    """The ID token claims checked before the token is trusted."""

    issuer: str
    subject: str
    issue_time: Optional[datetime] = None
    expiration_time: Optional[datetime] = None


class AuthenticatedIdentity(BaseModel):
    """Normalized identity handed to the authentication subsystem.

    ``group_names`` is ``None`` when the connector has no groups claim
    configured, meaning group membership is managed elsewhere. An empty
    list means the connector manages memberships and the user has none.
    """

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1)
    email: str = Field(min_length=1)
    full_name: str = ""
    group_names: Optional[list[str]] = None
    connector: str


class FailureKind(str, enum.Enum):
    """Named reasons a login attempt can end in the ``failed`` state."""

    DISCOVERY_ERROR = "discovery_error"
    PROVIDER_ERROR = "provider_error"
    UNSOLICITED_RESPONSE = "unsolicited_response"
    TOKEN_EXCHANGE_ERROR = "token_exchange_error"
    ISSUER_MISMATCH = "issuer_mismatch"
    INVALID_ISSUE_TIME = "invalid_issue_time"
    TOKEN_EXPIRED = "token_expired"
    USER_INFO_ERROR = "user_info_error"
    SUBJECT_MISMATCH = "subject_mismatch"
    MISSING_EMAIL_CLAIM = "missing_email_claim"


class LoginFailure(BaseModel):
    """Terminal failure of a login attempt.

    ``error_code`` and ``error_description`` carry the provider's error
    object when the failure originated from a provider response.
    """

    kind: FailureKind
    message: str
    error_code: Optional[str] = None
    error_description: Optional[str] = None

    def to_exception(self) -> LoginFailedError:
        """Return the :class:`~ssoconnect.exceptions.LoginFailedError` matching this failure."""
        from ssoconnect.exceptions import error_class_for

        return error_class_for(self.kind)(
            self.message,
            error_code=self.error_code,
            error_description=self.error_description,
        )


class Redirect(BaseModel):
    """Instruction to send the browser to ``url``."""

    url: str


class LoginResult(BaseModel):
    """Outcome of processing a callback: an identity or a failure, never both."""

    identity: Optional[AuthenticatedIdentity] = None
    failure: Optional[LoginFailure] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> LoginResult:
        if (self.identity is None) == (self.failure is None):
            raise ValueError("LoginResult needs exactly one of identity or failure")
        return self

    @classmethod
    def success(cls, identity: AuthenticatedIdentity) -> LoginResult:
        return cls(identity=identity)

    @classmethod
    def failed(cls, failure: LoginFailure) -> LoginResult:
        return cls(failure=failure)

    @property
    def ok(self) -> bool:
        return self.identity is not None

    def raise_for_failure(self) -> AuthenticatedIdentity:
        """Return the identity, or raise the exception matching the failure kind.

        Raises:
            LoginFailedError: The subclass registered for ``failure.kind``.
        """
        if self.identity is not None:
            return self.identity
        raise self.failure.to_exception()


class FlowState(str, enum.Enum):
    """States of the callback flow; ``completed`` and ``failed`` are terminal."""

    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    RESPONSE_RECEIVED = "response_received"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    ID_TOKEN_VALIDATED = "id_token_validated"
    USER_INFO_FETCHED = "user_info_fetched"
    COMPLETED = "completed"
    FAILED = "failed"
