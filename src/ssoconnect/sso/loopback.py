"""Loopback login driver for trying a connector from the terminal.

:class:`LoopbackLogin` plays the part of the web tier on
``http://127.0.0.1:<port>``: it starts the login, opens the authorization
URL in the user's browser, and serves the connector's callback page until
the provider redirects back or the timeout expires. The callback URL is
``http://127.0.0.1:<port>/~sso/callback/<name>``, which must be registered
as a redirect URI with the provider.
"""

from __future__ import annotations

import html
import logging
import socket
import threading
import time
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional, Union
from urllib.parse import urlsplit

from ssoconnect.exceptions import AuthError, LoginFailedError, SsoConnectError
from ssoconnect.models import LoginFailure, LoginResult
from ssoconnect.sso.base import SsoConnector
from ssoconnect.sso.session import InMemoryLoginSession

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"

DEFAULT_TIMEOUT = 120.0


def _find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((LOOPBACK_HOST, 0))
        return s.getsockname()[1]


class _CallbackServer(HTTPServer):
    """One-shot server recording the outcome of the first callback request."""

    outcome: Union[LoginResult, SsoConnectError, None] = None


def _page(title: str, detail: str = "") -> bytes:
    body = f"<h2>{html.escape(title)}</h2>"
    if detail:
        body += f"<p>{html.escape(detail)}</p>"
    return f"<html><body>{body}</body></html>".encode("utf-8")


class LoopbackLogin:
    """Drive one login through a connector using a temporary local server.

    Args:
        connector_factory: Called with the loopback server URL and returns
            the connector to log in with. The caller keeps ownership of the
            returned connector.
        port: Local port to listen on. A free port is picked when ``None``.
        timeout: Seconds to wait for the callback.
        open_browser: Whether to open the authorization URL automatically.
        on_redirect: Called with the authorization URL before waiting, e.g.
            to print it for the user.
    """

    def __init__(
        self,
        connector_factory: Callable[[str], SsoConnector],
        port: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
        open_browser: bool = True,
        on_redirect: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.connector_factory = connector_factory
        self.port = port
        self.timeout = timeout
        self.open_browser = open_browser
        self.on_redirect = on_redirect

    def run(self) -> LoginResult:
        """Run the login and return the connector's result.

        Raises:
            AuthError: If no callback arrives within :attr:`timeout`.
            SsoConnectError: Whatever the connector raised while processing
                the callback.
        """
        port = self.port or _find_free_port()
        server_url = f"http://{LOOPBACK_HOST}:{port}"
        connector = self.connector_factory(server_url)
        session = InMemoryLoginSession()

        server = _CallbackServer(
            (LOOPBACK_HOST, port), self._handler(connector, session, server_url)
        )
        try:
            outcome = connector.initiate_login(session)
            if isinstance(outcome, LoginFailure):
                return LoginResult.failed(outcome)

            if self.on_redirect is not None:
                self.on_redirect(outcome.url)
            if self.open_browser:
                threading.Thread(
                    target=webbrowser.open, args=(outcome.url,), daemon=True
                ).start()

            return self._serve(server)
        finally:
            server.server_close()

    def _serve(self, server: _CallbackServer) -> LoginResult:
        deadline = time.monotonic() + self.timeout
        while server.outcome is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthError(
                    f"No SSO callback received within {self.timeout:g} seconds"
                )
            server.timeout = remaining
            server.handle_request()

        outcome = server.outcome
        if isinstance(outcome, SsoConnectError):
            raise outcome
        return outcome

    def _handler(
        self, connector: SsoConnector, session: InMemoryLoginSession, server_url: str
    ) -> type[BaseHTTPRequestHandler]:
        callback_path = urlsplit(connector.callback_url).path

        class CallbackHandler(BaseHTTPRequestHandler):
            server: _CallbackServer

            def do_GET(self) -> None:
                if urlsplit(self.path).path != callback_path:
                    self._respond(404, _page("Not found"))
                    return

                try:
                    result = connector.process_callback(session, server_url + self.path)
                except SsoConnectError as exc:
                    self.server.outcome = exc
                    self._respond(500, _page("Login failed", str(exc)))
                    return

                self.server.outcome = result
                try:
                    identity = result.raise_for_failure()
                except LoginFailedError as exc:
                    self._respond(403, _page("Login failed", str(exc)))
                    return
                page = _page(
                    f"Logged in as {identity.username}",
                    "You can close this window and return to the terminal.",
                )
                self._respond(200, page)

            def _respond(self, status: int, body: bytes) -> None:
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("Loopback server: " + format, *args)

        return CallbackHandler
