"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~ssoconnect.exceptions.SsoConnectError` subclass.
Shell wrappers can inspect the exit code of ``ssoconnect login`` to tell a
rejected login apart from a misconfigured connector or an unreachable
provider without parsing stderr.

Example::

    $ ssoconnect login okta
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the provider or a validation step rejected the login
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""The login attempt was rejected (provider error, failed validation, missing claims)."""

EXIT_NOT_FOUND = 4
"""The requested connector does not exist."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_RESPONSE_PARSE_ERROR = 7
"""A provider response could not be parsed (malformed JSON, JWT or callback)."""
