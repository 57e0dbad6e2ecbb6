"""Login command -- try a connector end to end from the terminal.

``ssoconnect login NAME`` starts a temporary web tier on
``http://127.0.0.1:<port>``, opens the provider's authorization page in the
browser and prints the identity produced by the connector once the provider
redirects back. The loopback callback URL
(``http://127.0.0.1:<port>/~sso/callback/<name>``) must be registered as a
redirect URI with the provider, so a fixed ``--port`` is usually needed.
"""

from __future__ import annotations

from typing import Optional

import typer

from ssoconnect.exceptions import LoginFailedError, SsoConnectError
from ssoconnect.exit_codes import EXIT_AUTH_FAILURE, EXIT_NOT_FOUND
from ssoconnect.output import error, info, print_data, print_record, success, suggest


def login_command(
    ctx: typer.Context,
    name: str = typer.Argument(help="Connector name."),
    port: Optional[int] = typer.Option(
        None, "--port", help="Local port for the callback server (default: any free port)."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the authorization URL instead of opening a browser."
    ),
    timeout: float = typer.Option(
        120.0, "--timeout", help="Seconds to wait for the provider's callback."
    ),
) -> None:
    """Log in through a connector using a local callback server.

    Example::

        ssoconnect login okta --port 8765
        ssoconnect --json login okta --port 8765 --no-browser
    """
    from ssoconnect.config import (
        connector_config_exists,
        create_http_client,
        load_connector_config,
        resolve_config,
    )
    from ssoconnect.plugins.openid import OpenIdConnector
    from ssoconnect.sso.loopback import LoopbackLogin

    if not connector_config_exists(name):
        error(f"Connector '{name}' not found.")
        suggest("List connectors: ssoconnect connector list")
        raise typer.Exit(code=EXIT_NOT_FOUND)

    cli_server_url = ctx.obj.get("server_url") if ctx.obj else None
    global_config = resolve_config(cli_server_url)

    def _on_redirect(url: str) -> None:
        if no_browser:
            info("Open this URL in your browser to log in:")
            print_data(url)
        else:
            info("Opening the provider's login page in your browser ...")
        info("Waiting for the provider to redirect back ...")

    try:
        config = load_connector_config(name)
        with create_http_client(global_config.request) as client:
            login = LoopbackLogin(
                lambda server_url: OpenIdConnector(config, server_url, http_client=client),
                port=port,
                timeout=timeout,
                open_browser=not no_browser,
                on_redirect=_on_redirect,
            )
            result = login.run()
    except SsoConnectError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    try:
        identity = result.raise_for_failure()
    except LoginFailedError as exc:
        error(f"Login failed ({exc.kind.value}): {exc}")
        raise typer.Exit(code=EXIT_AUTH_FAILURE) from None

    success(f"Logged in as '{identity.username}'.")
    print_record(identity.model_dump(mode="json"), title="Authenticated identity")
