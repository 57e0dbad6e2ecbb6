"""Tests for the OpenID callback state machine."""

from __future__ import annotations

import base64
import json
import logging
from datetime import timedelta
from unittest.mock import MagicMock
from urllib.parse import unquote_plus

import httpx
import pytest

from ssoconnect.exceptions import ConnectionError_, IssuerMismatchError, ResponseParseError
from ssoconnect.models import FailureKind, FlowState, LoginAttempt, ProviderMetadata
from ssoconnect.plugins.openid.callback import (
    CallbackFlow,
    basic_auth_header,
    bearer_challenge_error,
    parse_callback_params,
)
from ssoconnect.sso.session import InMemoryLoginSession

from conftest import NOW


CALLBACK = "https://git.example.com/~sso/callback/idp"
STATE = "OIDC-expected-state"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def session(provider_metadata: ProviderMetadata) -> InMemoryLoginSession:
    session = InMemoryLoginSession()
    session.store_attempt(LoginAttempt(state=STATE, metadata=provider_metadata))
    return session


@pytest.fixture
def flow(http_client: MagicMock) -> CallbackFlow:
    return CallbackFlow(
        connector_name="idp",
        client_id="client-1",
        client_secret="s3cret",
        redirect_uri=CALLBACK,
        http_client=http_client,
        clock=lambda: NOW,
    )


def _callback(**params: str) -> str:
    query = "&".join(f"{k}={v}" for k, v in params.items())
    return f"{CALLBACK}?{query}"


def _arrange_provider(
    http_client: MagicMock,
    response_factory,
    id_token: str,
    userinfo: dict | None = None,
) -> None:
    http_client.post.return_value = response_factory(
        {"access_token": "at-1", "id_token": id_token, "token_type": "Bearer"}
    )
    http_client.get.return_value = response_factory(
        userinfo if userinfo is not None else {"sub": "u123", "email": "jane@example.com"}
    )


# ---------------------------------------------------------------------------
# Helpers under test
# ---------------------------------------------------------------------------


class TestBasicAuthHeader:
    def test_encodes_credentials(self) -> None:
        header = basic_auth_header("client-1", "s3cret")
        assert header == "Basic " + base64.b64encode(b"client-1:s3cret").decode()

    def test_form_urlencodes_before_joining(self) -> None:
        header = basic_auth_header("id:with colon", "p@ss word+")
        decoded = base64.b64decode(header[len("Basic "):]).decode()
        client_id, secret = decoded.split(":")
        assert client_id == "id%3Awith+colon"
        assert unquote_plus(client_id) == "id:with colon"
        assert unquote_plus(secret) == "p@ss word+"


class TestParseCallbackParams:
    def test_first_value_wins(self) -> None:
        assert parse_callback_params("/cb?code=a&code=b&state=s") == {"code": "a", "state": "s"}

    def test_relative_url(self) -> None:
        assert parse_callback_params("/~sso/callback/idp") == {}


class TestBearerChallengeError:
    def test_parses_challenge(self, response_factory) -> None:
        response = response_factory(
            None,
            status_code=401,
            headers={
                "WWW-Authenticate": 'Bearer realm="idp", error="invalid_token", '
                'error_description="The access token expired"'
            },
        )
        assert bearer_challenge_error(response) == ("invalid_token", "The access token expired")

    def test_falls_back_to_json_body(self, response_factory) -> None:
        response = response_factory(
            {"error": "insufficient_scope", "error_description": "Needs openid"},
            status_code=403,
            headers={"WWW-Authenticate": 'Bearer realm="idp"'},
        )
        assert bearer_challenge_error(response) == ("insufficient_scope", "Needs openid")

    def test_nothing_usable(self, response_factory) -> None:
        response = response_factory(ValueError("no json"), status_code=500)
        assert bearer_challenge_error(response) == (None, None)


# ---------------------------------------------------------------------------
# Callback parsing and state validation
# ---------------------------------------------------------------------------


class TestStateValidation:
    def test_provider_error(self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock) -> None:
        result = flow.run(
            session,
            _callback(error="access_denied", error_description="User+cancelled", state=STATE),
        )

        assert result.failure is not None
        assert result.failure.kind is FailureKind.PROVIDER_ERROR
        assert result.failure.message == "User cancelled"
        assert result.failure.error_code == "access_denied"
        assert flow.state is FlowState.FAILED
        http_client.post.assert_not_called()

    def test_provider_error_without_description(self, flow: CallbackFlow, session: InMemoryLoginSession) -> None:
        result = flow.run(session, _callback(error="server_error"))
        assert result.failure is not None
        assert result.failure.message == "server_error"

    def test_state_mismatch_is_unsolicited(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock
    ) -> None:
        result = flow.run(session, _callback(code="c", state="OIDC-other"))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.UNSOLICITED_RESPONSE
        assert result.failure.message == "Unsolicited OIDC authentication response"
        http_client.post.assert_not_called()

    def test_missing_callback_state_is_unsolicited(self, flow: CallbackFlow, session: InMemoryLoginSession) -> None:
        result = flow.run(session, _callback(code="c"))
        assert result.failure is not None
        assert result.failure.kind is FailureKind.UNSOLICITED_RESPONSE

    def test_no_stored_attempt_is_unsolicited(self, flow: CallbackFlow) -> None:
        result = flow.run(InMemoryLoginSession(), _callback(code="c", state=STATE))
        assert result.failure is not None
        assert result.failure.kind is FailureKind.UNSOLICITED_RESPONSE

    def test_consumed_state_is_unsolicited(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata
    ) -> None:
        session = InMemoryLoginSession()
        session.store_attempt(LoginAttempt(state=None, metadata=provider_metadata))
        result = flow.run(session, _callback(code="c", state=STATE))
        assert result.failure is not None
        assert result.failure.kind is FailureKind.UNSOLICITED_RESPONSE

    def test_non_ascii_state_is_unsolicited(self, flow: CallbackFlow, session: InMemoryLoginSession) -> None:
        result = flow.run(session, _callback(code="c", state="%C3%A9t%C3%A9"))
        assert result.failure is not None
        assert result.failure.kind is FailureKind.UNSOLICITED_RESPONSE

    def test_missing_code_after_valid_state(self, flow: CallbackFlow, session: InMemoryLoginSession) -> None:
        with pytest.raises(ResponseParseError, match="no authorization code"):
            flow.run(session, _callback(state=STATE))
        assert flow.state is FlowState.FAILED
        assert session.load_attempt() is None

    def test_state_is_single_use(self, flow: CallbackFlow, session: InMemoryLoginSession) -> None:
        attempt = flow.validate_state(session, STATE)

        assert attempt.state == STATE
        assert flow.state is FlowState.STATE_VALIDATED
        remaining = session.load_attempt()
        assert remaining is not None
        assert remaining.state is None
        assert remaining.metadata == attempt.metadata


# ---------------------------------------------------------------------------
# Token exchange
# ---------------------------------------------------------------------------


class TestTokenExchange:
    def test_request_shape(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, http_client: MagicMock, response_factory, id_token_factory
    ) -> None:
        http_client.post.return_value = response_factory(
            {"access_token": "at-1", "id_token": id_token_factory(), "token_type": "bearer"}
        )

        tokens = flow.exchange_code(provider_metadata, "code-1")

        assert tokens.access_token == "at-1"
        assert flow.state is FlowState.CODE_EXCHANGED
        args, kwargs = http_client.post.call_args
        assert args == ("https://idp.test/token",)
        assert kwargs["data"] == {
            "grant_type": "authorization_code",
            "code": "code-1",
            "redirect_uri": CALLBACK,
        }
        assert kwargs["headers"]["Accept"] == "application/json"
        assert kwargs["headers"]["Authorization"] == basic_auth_header("client-1", "s3cret")

    def test_error_response_carries_error_object(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory
    ) -> None:
        http_client.post.return_value = response_factory(
            {"error": "invalid_grant", "error_description": "Code expired"}, status_code=400
        )

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.TOKEN_EXCHANGE_ERROR
        assert result.failure.message == "Code expired"
        assert result.failure.error_code == "invalid_grant"
        http_client.get.assert_not_called()

    def test_error_response_without_body(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory
    ) -> None:
        http_client.post.return_value = response_factory(ValueError("html"), status_code=502)

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.TOKEN_EXCHANGE_ERROR
        assert "HTTP 502" in result.failure.message

    def test_transport_error_propagates(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock
    ) -> None:
        http_client.post.side_effect = httpx.ConnectTimeout("timed out")

        with pytest.raises(ConnectionError_, match="timed out") as exc_info:
            flow.run(session, _callback(code="c", state=STATE))

        assert isinstance(exc_info.value.__cause__, httpx.ConnectTimeout)
        assert flow.state is FlowState.FAILED
        assert session.load_attempt() is None

    @pytest.mark.parametrize(
        "body",
        [
            {"id_token": "x"},
            {"access_token": "at"},
            {"access_token": "at", "id_token": ""},
            ["access_token"],
        ],
    )
    def test_malformed_success_body(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, http_client: MagicMock, response_factory, body
    ) -> None:
        http_client.post.return_value = response_factory(body)
        with pytest.raises(ResponseParseError):
            flow.exchange_code(provider_metadata, "c")

    def test_non_json_success_body(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, http_client: MagicMock, response_factory
    ) -> None:
        http_client.post.return_value = response_factory(json.JSONDecodeError("x", "y", 0))
        with pytest.raises(ResponseParseError, match="not valid JSON"):
            flow.exchange_code(provider_metadata, "c")

    def test_non_bearer_token_type(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, http_client: MagicMock, response_factory
    ) -> None:
        http_client.post.return_value = response_factory(
            {"access_token": "at", "id_token": "it", "token_type": "DPoP"}
        )
        with pytest.raises(ResponseParseError, match="Unsupported token type"):
            flow.exchange_code(provider_metadata, "c")


# ---------------------------------------------------------------------------
# ID token validation
# ---------------------------------------------------------------------------


class TestIdTokenValidation:
    def test_valid_token(self, flow: CallbackFlow, provider_metadata: ProviderMetadata, id_token_factory) -> None:
        claims = flow.validate_id_token(
            id_token_factory(expires_at=NOW + timedelta(minutes=5)), provider_metadata
        )
        assert claims.subject == "u123"
        assert claims.issuer == "https://idp.test"
        assert claims.issue_time == NOW
        assert flow.state is FlowState.ID_TOKEN_VALIDATED

    def test_signature_is_not_verified(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, id_token_factory
    ) -> None:
        header, payload, _ = id_token_factory().split(".")
        claims = flow.validate_id_token(f"{header}.{payload}.AAAA", provider_metadata)
        assert claims.subject == "u123"

    def test_issuer_mismatch(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory, id_token_factory
    ) -> None:
        _arrange_provider(http_client, response_factory, id_token_factory(issuer="https://evil.test"))

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.ISSUER_MISMATCH
        assert result.failure.message == "Inconsistent issuer in provider metadata and ID token"
        http_client.get.assert_not_called()

    def test_missing_issuer_is_mismatch(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, id_token_factory
    ) -> None:
        with pytest.raises(IssuerMismatchError):
            flow.validate_id_token(id_token_factory(issuer=None), provider_metadata)

    @pytest.mark.parametrize("seconds, fails", [(9, False), (10, False), (11, True)])
    def test_issue_time_skew(
        self,
        flow: CallbackFlow,
        session: InMemoryLoginSession,
        http_client: MagicMock,
        response_factory,
        id_token_factory,
        seconds: int,
        fails: bool,
    ) -> None:
        _arrange_provider(
            http_client, response_factory, id_token_factory(issued_at=NOW + timedelta(seconds=seconds))
        )

        result = flow.run(session, _callback(code="c", state=STATE))

        if fails:
            assert result.failure is not None
            assert result.failure.kind is FailureKind.INVALID_ISSUE_TIME
            assert result.failure.message == "Invalid issue date of ID token"
        else:
            assert result.ok

    @pytest.mark.parametrize("seconds, fails", [(-1, True), (0, False), (60, False)])
    def test_expiration(
        self,
        flow: CallbackFlow,
        session: InMemoryLoginSession,
        http_client: MagicMock,
        response_factory,
        id_token_factory,
        seconds: int,
        fails: bool,
    ) -> None:
        _arrange_provider(
            http_client,
            response_factory,
            id_token_factory(
                issued_at=NOW - timedelta(minutes=5),
                expires_at=NOW + timedelta(seconds=seconds),
            ),
        )

        result = flow.run(session, _callback(code="c", state=STATE))

        if fails:
            assert result.failure is not None
            assert result.failure.kind is FailureKind.TOKEN_EXPIRED
            assert result.failure.message == "ID token was expired"
        else:
            assert result.ok

    def test_missing_time_claims_pass(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, id_token_factory
    ) -> None:
        claims = flow.validate_id_token(id_token_factory(issued_at=None), provider_metadata)
        assert claims.issue_time is None
        assert claims.expiration_time is None

    def test_malformed_token(self, flow: CallbackFlow, provider_metadata: ProviderMetadata) -> None:
        with pytest.raises(ResponseParseError, match="Malformed ID token"):
            flow.validate_id_token("not-a-jwt", provider_metadata)

    def test_missing_subject(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, id_token_factory
    ) -> None:
        with pytest.raises(ResponseParseError, match="sub"):
            flow.validate_id_token(id_token_factory(subject=None), provider_metadata)


# ---------------------------------------------------------------------------
# User info
# ---------------------------------------------------------------------------


class TestUserInfo:
    def test_request_shape(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, http_client: MagicMock, response_factory
    ) -> None:
        http_client.get.return_value = response_factory({"sub": "u123", "email": "j@x"})

        userinfo = flow.fetch_user_info(provider_metadata, "at-1", "u123")

        assert userinfo["email"] == "j@x"
        assert flow.state is FlowState.USER_INFO_FETCHED
        args, kwargs = http_client.get.call_args
        assert args == ("https://idp.test/userinfo",)
        assert kwargs["headers"]["Authorization"] == "Bearer at-1"

    def test_subject_mismatch(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory, id_token_factory
    ) -> None:
        _arrange_provider(
            http_client,
            response_factory,
            id_token_factory(),
            userinfo={"sub": "someone-else", "email": "jane@example.com"},
        )

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.SUBJECT_MISMATCH
        assert result.failure.message == "Inconsistent sub in ID token and userinfo"

    def test_error_response_from_challenge(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory, id_token_factory
    ) -> None:
        _arrange_provider(http_client, response_factory, id_token_factory())
        http_client.get.return_value = response_factory(
            None,
            status_code=401,
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.USER_INFO_ERROR
        assert result.failure.message == "invalid_token"
        assert result.failure.error_code == "invalid_token"

    def test_missing_email(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory, id_token_factory
    ) -> None:
        _arrange_provider(http_client, response_factory, id_token_factory(), userinfo={"sub": "u123"})

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.failure is not None
        assert result.failure.kind is FailureKind.MISSING_EMAIL_CLAIM

    def test_transport_error(
        self, flow: CallbackFlow, provider_metadata: ProviderMetadata, http_client: MagicMock
    ) -> None:
        http_client.get.side_effect = httpx.ConnectError("refused")
        with pytest.raises(ConnectionError_, match="refused"):
            flow.fetch_user_info(provider_metadata, "at", "u123")


# ---------------------------------------------------------------------------
# Whole flow
# ---------------------------------------------------------------------------


class TestRun:
    def test_success(
        self, flow: CallbackFlow, session: InMemoryLoginSession, http_client: MagicMock, response_factory, id_token_factory
    ) -> None:
        _arrange_provider(http_client, response_factory, id_token_factory())

        result = flow.run(session, _callback(code="c", state=STATE))

        assert result.identity is not None
        assert result.identity.username == "jane"
        assert flow.state is FlowState.COMPLETED
        assert session.load_attempt() is None

    def test_session_cleared_after_failure(self, flow: CallbackFlow, session: InMemoryLoginSession) -> None:
        flow.run(session, _callback(code="c", state="OIDC-wrong"))
        assert session.load_attempt() is None

    def test_transitions_logged(
        self,
        flow: CallbackFlow,
        session: InMemoryLoginSession,
        http_client: MagicMock,
        response_factory,
        id_token_factory,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        _arrange_provider(http_client, response_factory, id_token_factory())

        with caplog.at_level(logging.DEBUG, logger="ssoconnect.plugins.openid.callback"):
            flow.run(session, _callback(code="c", state=STATE))

        transitions = [
            r.getMessage()
            for r in caplog.records
            if r.levelno == logging.DEBUG and r.name == "ssoconnect.plugins.openid.callback"
        ]
        assert transitions[0].endswith("awaiting_callback -> response_received")
        assert transitions[-1].endswith("user_info_fetched -> completed")
        assert "s3cret" not in caplog.text
        assert "at-1" not in caplog.text

    def test_failure_logged_as_warning(
        self,
        flow: CallbackFlow,
        session: InMemoryLoginSession,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="ssoconnect.plugins.openid.callback"):
            flow.run(session, _callback(code="c", state="OIDC-wrong"))
        assert "unsolicited_response" in caplog.text
