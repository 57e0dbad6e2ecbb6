"""Callback processing for the OpenID Connect authorization code flow.

:class:`CallbackFlow` drives one provider callback through a fixed sequence
of states::

    awaiting_callback -> response_received -> state_validated
        -> code_exchanged -> id_token_validated -> user_info_fetched
        -> completed

Any step can end the flow in ``failed``. Named failures are raised
internally as :class:`~ssoconnect.exceptions.LoginFailedError` subclasses
and returned from :meth:`CallbackFlow.run` as a failed
:class:`~ssoconnect.models.LoginResult`. Transport faults
(:class:`~ssoconnect.exceptions.ConnectionError_`) and malformed provider
responses (:class:`~ssoconnect.exceptions.ResponseParseError`) propagate to
the caller. The login attempt is removed from the session in every case.

The ID token is decoded without signature verification: it is received
directly from the token endpoint over TLS, authenticated with the client
secret.
"""

from __future__ import annotations

import base64
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, quote_plus, urlsplit

import httpx
import jwt

from ssoconnect.exceptions import (
    ConnectionError_,
    InvalidIssueTimeError,
    IssuerMismatchError,
    LoginFailedError,
    ProviderError,
    ResponseParseError,
    SubjectMismatchError,
    TokenExchangeError,
    TokenExpiredError,
    UnsolicitedResponseError,
    UserInfoError,
)
from ssoconnect.models import (
    AuthenticatedIdentity,
    FlowState,
    IdTokenClaims,
    LoginAttempt,
    LoginResult,
    ProviderMetadata,
    TokenSet,
)
from ssoconnect.plugins.openid.identity import assemble
from ssoconnect.sso.session import LoginSession

logger = logging.getLogger(__name__)

ISSUE_TIME_SKEW = timedelta(seconds=10)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def basic_auth_header(client_id: str, client_secret: str) -> str:
    """Return the ``Authorization`` header value for client_secret_basic.

    Client id and secret are form-urlencoded before being joined, as
    required by :rfc:`6749#section-2.3.1`.
    """
    credentials = f"{quote_plus(client_id)}:{quote_plus(client_secret)}"
    encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def parse_callback_params(callback_url: str) -> dict[str, str]:
    """Return the first value of every query parameter of *callback_url*."""
    query = urlsplit(callback_url).query
    return {
        key: values[0]
        for key, values in parse_qs(query, keep_blank_values=True).items()
    }


def json_error_object(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    """Extract ``(error, error_description)`` from a JSON error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    description = body.get("error_description")
    return (
        error if isinstance(error, str) else None,
        description if isinstance(description, str) else None,
    )


def bearer_challenge_error(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    """Extract ``(error, error_description)`` from a ``WWW-Authenticate: Bearer`` challenge.

    Falls back to the JSON body when the challenge carries no ``error``
    parameter, see :rfc:`6750#section-3`.
    """
    challenge = response.headers.get("WWW-Authenticate", "")
    if challenge[:6].lower() == "bearer":
        params = dict(_CHALLENGE_PARAM.findall(challenge))
        if "error" in params:
            return params["error"], params.get("error_description")
    return json_error_object(response)


def _numeric_date(claims: dict[str, Any], name: str) -> Optional[datetime]:
    value = claims.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ResponseParseError(f"ID token claim '{name}' is not a numeric date")
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ResponseParseError(f"ID token claim '{name}' is out of range") from exc


class CallbackFlow:
    """Process one callback request for an OpenID connector.

    A flow instance handles a single callback and is discarded afterwards;
    :attr:`state` reports how far it got.

    Args:
        connector_name: Name of the connector, recorded on the identity.
        client_id: Client id assigned by the provider.
        client_secret: Resolved client secret.
        redirect_uri: The callback URL sent in the authorization request.
        groups_claim: Configured groups claim name, if any.
        http_client: Client for the token and user-info requests.
        clock: Returns the current aware UTC time. Injected by tests.
    """

    def __init__(
        self,
        connector_name: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: httpx.Client,
        groups_claim: Optional[str] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.connector_name = connector_name
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.groups_claim = groups_claim
        self.http_client = http_client
        self.clock = clock
        self.state = FlowState.AWAITING_CALLBACK

    def _transition(self, state: FlowState) -> None:
        logger.debug(
            "OIDC login via '%s': %s -> %s",
            self.connector_name,
            self.state.value,
            state.value,
        )
        self.state = state

    def run(self, session: LoginSession, callback_url: str) -> LoginResult:
        """Process *callback_url* against the attempt stored in *session*.

        Returns:
            A successful result holding the identity, or a failed result
            naming why the login was rejected.

        Raises:
            ConnectionError_: If the token or user-info endpoint cannot be
                reached.
            ResponseParseError: If the callback or a provider response is
                malformed.
        """
        try:
            identity = self._process(session, callback_url)
        except LoginFailedError as exc:
            self._transition(FlowState.FAILED)
            logger.warning(
                "OIDC login via '%s' failed (%s): %s",
                self.connector_name,
                exc.kind.value,
                exc,
            )
            return LoginResult.failed(exc.to_failure())
        except (ConnectionError_, ResponseParseError):
            self._transition(FlowState.FAILED)
            raise
        finally:
            # Any outcome ends the attempt, a stale or forged callback included.
            session.clear()

        self._transition(FlowState.COMPLETED)
        logger.info(
            "OIDC login via '%s' succeeded for user '%s'",
            self.connector_name,
            identity.username,
        )
        return LoginResult.success(identity)

    def _process(self, session: LoginSession, callback_url: str) -> AuthenticatedIdentity:
        params = parse_callback_params(callback_url)
        self._transition(FlowState.RESPONSE_RECEIVED)

        if "error" in params:
            raise ProviderError.from_error_object(
                params["error"] or None, params.get("error_description") or None
            )

        attempt = self.validate_state(session, params.get("state"))
        code = params.get("code")
        if not code:
            raise ResponseParseError("OIDC callback carries no authorization code")

        tokens = self.exchange_code(attempt.metadata, code)
        claims = self.validate_id_token(tokens.id_token, attempt.metadata)
        userinfo = self.fetch_user_info(attempt.metadata, tokens.access_token, claims.subject)
        return assemble(claims.subject, userinfo, self.groups_claim, self.connector_name)

    def validate_state(self, session: LoginSession, returned_state: Optional[str]) -> LoginAttempt:
        """Match the callback's ``state`` with the stored attempt and consume it.

        Raises:
            UnsolicitedResponseError: If no attempt is stored, its state was
                already consumed, the callback carries no state or the two
                differ.
        """
        attempt = session.load_attempt()
        if (
            attempt is None
            or attempt.state is None
            or not returned_state
            or not secrets.compare_digest(
                attempt.state.encode("utf-8"), returned_state.encode("utf-8")
            )
        ):
            raise UnsolicitedResponseError()
        session.invalidate_state()
        self._transition(FlowState.STATE_VALIDATED)
        return attempt

    def exchange_code(self, metadata: ProviderMetadata, code: str) -> TokenSet:
        """Redeem the authorization code at the token endpoint.

        Raises:
            TokenExchangeError: If the provider answers with a non-200 status.
            ConnectionError_: On transport failures.
            ResponseParseError: If the success body lacks the tokens.
        """
        try:
            response = self.http_client.post(
                metadata.token_endpoint,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
                headers={
                    "Authorization": basic_auth_header(self.client_id, self.client_secret),
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise ConnectionError_(
                f"Token request to {metadata.token_endpoint} failed: {exc}"
            ) from exc

        if response.status_code != 200:
            error, description = json_error_object(response)
            raise TokenExchangeError.from_error_object(
                error, description, status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ResponseParseError(f"Token response is not valid JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise ResponseParseError("Token response is not a JSON object")
        for field in ("access_token", "id_token"):
            if not isinstance(body.get(field), str) or not body[field]:
                raise ResponseParseError(f"Token response missing '{field}' field")
        token_type = body.get("token_type") or "Bearer"
        if not isinstance(token_type, str) or token_type.lower() != "bearer":
            raise ResponseParseError(f"Unsupported token type: {token_type}")

        self._transition(FlowState.CODE_EXCHANGED)
        return TokenSet(
            access_token=body["access_token"],
            id_token=body["id_token"],
            token_type=token_type,
        )

    def validate_id_token(self, id_token: str, metadata: ProviderMetadata) -> IdTokenClaims:
        """Decode the ID token and check issuer, issue time and expiration.

        Raises:
            IssuerMismatchError: If ``iss`` differs from the discovered issuer.
            InvalidIssueTimeError: If ``iat`` lies more than
                :data:`ISSUE_TIME_SKEW` in the future.
            TokenExpiredError: If ``exp`` lies in the past.
            ResponseParseError: If the token cannot be decoded or lacks
                ``sub``.
        """
        try:
            raw = jwt.decode(id_token, options={"verify_signature": False})
        except jwt.PyJWTError as exc:
            raise ResponseParseError(f"Malformed ID token: {exc}") from exc

        if raw.get("iss") != metadata.issuer:
            raise IssuerMismatchError()

        subject = raw.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ResponseParseError("ID token missing 'sub' claim")

        claims = IdTokenClaims(
            issuer=metadata.issuer,
            subject=subject,
            issue_time=_numeric_date(raw, "iat"),
            expiration_time=_numeric_date(raw, "exp"),
        )

        now = self.clock()
        if claims.issue_time is not None and claims.issue_time > now + ISSUE_TIME_SKEW:
            raise InvalidIssueTimeError()
        if claims.expiration_time is not None and now > claims.expiration_time:
            raise TokenExpiredError()

        self._transition(FlowState.ID_TOKEN_VALIDATED)
        return claims

    def fetch_user_info(
        self, metadata: ProviderMetadata, access_token: str, subject: str
    ) -> dict[str, Any]:
        """Fetch the user-info claims and check they belong to *subject*.

        Raises:
            UserInfoError: If the endpoint answers with a non-200 status.
            SubjectMismatchError: If the returned ``sub`` differs from
                *subject*.
            ConnectionError_: On transport failures.
            ResponseParseError: If the success body is not a JSON object.
        """
        try:
            response = self.http_client.get(
                metadata.userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise ConnectionError_(
                f"User info request to {metadata.userinfo_endpoint} failed: {exc}"
            ) from exc

        if response.status_code != 200:
            error, description = bearer_challenge_error(response)
            raise UserInfoError.from_error_object(
                error, description, status_code=response.status_code
            )

        try:
            userinfo = response.json()
        except ValueError as exc:
            raise ResponseParseError(f"User info response is not valid JSON: {exc}") from exc
        if not isinstance(userinfo, dict):
            raise ResponseParseError("User info response is not a JSON object")

        if userinfo.get("sub") != subject:
            raise SubjectMismatchError()

        self._transition(FlowState.USER_INFO_FETCHED)
        return userinfo
