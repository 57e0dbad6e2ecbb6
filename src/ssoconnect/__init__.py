"""ssoconnect -- OpenID Connect single sign-on connectors.

This package implements the server side of the OpenID Connect Authorization
Code flow for a web application's "Sign in with ..." buttons: it discovers
a provider's endpoints, builds the authorization redirect, processes the
provider's callback and hands a normalized identity to the application.

Typical web-tier usage::

    from ssoconnect.sso import MappingLoginSession, create_default_manager

    manager = create_default_manager(config)
    outcome = manager.initiate_login("okta", MappingLoginSession(request.session))
    ...
    result = manager.dispatch_callback(MappingLoginSession(request.session), url)

The ``ssoconnect`` console script manages saved connectors and runs a
loopback login against a real provider.

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration and connector storage.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    sso: Connector interface, login session state and registry.
    plugins.openid: The OpenID Connect connector.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
