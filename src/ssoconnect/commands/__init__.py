"""Built-in CLI sub-commands for ssoconnect.

* :mod:`~ssoconnect.commands.connector` -- add, inspect, check and remove
  saved connectors.
* :mod:`~ssoconnect.commands.discover` -- show a provider's discovered
  endpoints.
* :mod:`~ssoconnect.commands.login` -- run a loopback login through a
  connector.
* :mod:`~ssoconnect.commands.config` -- view and modify global settings.

Multi-command groups export a :class:`typer.Typer` sub-application; single
commands export a plain callback registered on the root app.
"""
