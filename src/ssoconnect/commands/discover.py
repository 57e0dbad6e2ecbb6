"""Discover command -- fetch and display an OpenID provider's metadata."""

from __future__ import annotations

import typer

from ssoconnect.exceptions import SsoConnectError
from ssoconnect.output import debug, error, print_record


def discover_command(
    ctx: typer.Context,
    issuer_url: str = typer.Argument(help="Issuer URL of the OpenID provider."),
) -> None:
    """Show the endpoints an OpenID provider advertises.

    Fetches ``<issuer>/.well-known/openid-configuration`` and prints the
    issuer, authorization, token and user-info endpoints.

    Example::

        ssoconnect discover https://accounts.google.com
        ssoconnect --json discover https://dev-1.okta.com
    """
    from ssoconnect.config import create_http_client, resolve_config
    from ssoconnect.plugins.openid.discovery import discover, discovery_url

    cli_server_url = ctx.obj.get("server_url") if ctx.obj else None
    config = resolve_config(cli_server_url)

    debug(f"GET {discovery_url(issuer_url)}")
    with create_http_client(config.request) as client:
        try:
            metadata = discover(issuer_url, client)
        except SsoConnectError as exc:
            error(str(exc))
            raise typer.Exit(code=exc.exit_code) from None

    print_record(metadata.model_dump(mode="json"), title="Provider metadata")
