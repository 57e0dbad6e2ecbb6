"""Connector commands -- manage saved OpenID connectors.

Provides the ``ssoconnect connector`` sub-command group. Each connector is
stored as one JSON file in the connectors directory; the client secret is
stored only as a credential source descriptor (``env:VAR``, ``file:/path``,
``prompt`` or ``value:SECRET``).

Typical workflow::

    ssoconnect connector add okta --issuer-url https://dev-1.okta.com \\
        --client-id 0oa1 --client-secret-source env:OKTA_SECRET
    ssoconnect connector check okta
    ssoconnect login okta
"""

from __future__ import annotations

from typing import Optional

import typer
from pydantic import ValidationError

from ssoconnect.exceptions import SsoConnectError
from ssoconnect.exit_codes import EXIT_INVALID_USAGE, EXIT_NOT_FOUND
from ssoconnect.models import DEFAULT_BUTTON_IMAGE_URL
from ssoconnect.output import (
    error,
    info,
    print_record,
    print_table,
    success,
    suggest,
    warning,
)


connector_app = typer.Typer(no_args_is_help=True)


def _require_connector(name: str) -> None:
    from ssoconnect.config import connector_config_exists

    if not connector_config_exists(name):
        error(f"Connector '{name}' not found.")
        suggest("List connectors: ssoconnect connector list")
        raise typer.Exit(code=EXIT_NOT_FOUND)


def _server_url(ctx: typer.Context) -> str:
    from ssoconnect.config import resolve_config

    cli_server_url = ctx.obj.get("server_url") if ctx.obj else None
    return resolve_config(cli_server_url).server_url


@connector_app.command("add")
def connector_add(
    ctx: typer.Context,
    name: str = typer.Argument(help="Connector name, used in the callback URL."),
    issuer_url: str = typer.Option(..., "--issuer-url", help="Issuer URL of the OpenID provider."),
    client_id: str = typer.Option(..., "--client-id", help="Client id assigned by the provider."),
    client_secret_source: str = typer.Option(
        ...,
        "--client-secret-source",
        help="Client secret source: env:VAR, file:/path, prompt or value:SECRET.",
    ),
    groups_claim: Optional[str] = typer.Option(
        None, "--groups-claim", help="Claim carrying the user's group names."
    ),
    button_image_url: str = typer.Option(
        DEFAULT_BUTTON_IMAGE_URL, "--button-image-url", help="Image shown on the login button."
    ),
) -> None:
    """Add or replace an OpenID connector.

    The connector is validated before it is saved. An existing connector
    with the same name is only replaced with ``--force``.

    Example::

        ssoconnect connector add okta --issuer-url https://dev-1.okta.com \\
            --client-id 0oa1 --client-secret-source env:OKTA_SECRET --groups-claim groups
    """
    from ssoconnect.config import connector_config_exists, save_connector_config
    from ssoconnect.models import OpenIdConnectorConfig
    from ssoconnect.plugins.openid import OpenIdConnector

    force = ctx.obj.get("force", False) if ctx.obj else False
    if connector_config_exists(name) and not force:
        error(f"Connector '{name}' already exists. Use --force to replace it.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    try:
        config = OpenIdConnectorConfig(
            name=name,
            issuer_url=issuer_url,
            client_id=client_id,
            client_secret_source=client_secret_source,
            groups_claim=groups_claim,
            button_image_url=button_image_url,
        )
    except ValidationError as exc:
        error(f"Invalid connector: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    connector = OpenIdConnector(config, _server_url(ctx))
    problems = connector.validate_config()
    if problems:
        for problem in problems:
            error(problem)
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    save_connector_config(config)
    success(f"Connector '{name}' saved.")
    if config.client_secret_source.startswith("value:"):
        warning("Client secret is stored in plain text; prefer an env: or file: source.")
    if issuer_url.startswith("http://"):
        warning("Issuer uses plain http; only use it with a local test provider.")
    info(f"Register this redirect URI with the provider: {connector.callback_url}")
    suggest(f"Check it: ssoconnect connector check {name}")


@connector_app.command("list")
def connector_list() -> None:
    """List saved connectors."""
    from ssoconnect.config import list_connector_configs, load_connector_config

    names = list_connector_configs()
    if not names:
        info("No connectors configured.")
        suggest("Add one: ssoconnect connector add NAME --issuer-url URL ...")
        return

    rows: list[list[str]] = []
    for name in names:
        try:
            config = load_connector_config(name)
        except SsoConnectError as exc:
            error(str(exc))
            continue
        rows.append([config.name, config.issuer_url, config.client_id, config.groups_claim or ""])
    print_table(["Name", "Issuer", "Client ID", "Groups claim"], rows, title="SSO connectors")


@connector_app.command("show")
def connector_show(
    ctx: typer.Context,
    name: str = typer.Argument(help="Connector name."),
) -> None:
    """Show a connector's settings and its callback URL."""
    from ssoconnect.config import load_connector_config
    from ssoconnect.plugins.openid import OpenIdConnector

    _require_connector(name)
    try:
        config = load_connector_config(name)
    except SsoConnectError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    connector = OpenIdConnector(config, _server_url(ctx))
    record = config.model_dump(mode="json")
    record["callback_url"] = connector.callback_url
    record["manages_memberships"] = connector.is_managing_memberships
    print_record(record, title=f"Connector {name}")


@connector_app.command("remove")
def connector_remove(
    ctx: typer.Context,
    name: str = typer.Argument(help="Connector name."),
) -> None:
    """Delete a saved connector. Asks for confirmation unless ``--force``."""
    from ssoconnect.config import delete_connector_config

    _require_connector(name)
    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm(f"Remove connector '{name}'?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    delete_connector_config(name)
    success(f"Connector '{name}' removed.")


@connector_app.command("check")
def connector_check(
    ctx: typer.Context,
    name: str = typer.Argument(help="Connector name."),
) -> None:
    """Validate a connector and run provider discovery against its issuer.

    Prints the discovered provider metadata on success.

    Example::

        ssoconnect connector check okta
        ssoconnect --json connector check okta
    """
    from ssoconnect.config import create_http_client, load_connector_config, resolve_config
    from ssoconnect.plugins.openid import OpenIdConnector

    _require_connector(name)
    cli_server_url = ctx.obj.get("server_url") if ctx.obj else None
    global_config = resolve_config(cli_server_url)
    try:
        config = load_connector_config(name)
    except SsoConnectError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    with create_http_client(global_config.request) as client:
        connector = OpenIdConnector(config, global_config.server_url, http_client=client)
        problems = connector.validate_config()
        if problems:
            for problem in problems:
                error(problem)
            raise typer.Exit(code=EXIT_INVALID_USAGE)

        info(f"Discovering provider metadata from {config.issuer_url} ...")
        try:
            metadata = connector.discover_provider_metadata()
        except SsoConnectError as exc:
            error(str(exc))
            raise typer.Exit(code=exc.exit_code) from None

    print_record(metadata.model_dump(mode="json"), title=f"Provider of {name}")
    success(f"Connector '{name}' is ready.")
