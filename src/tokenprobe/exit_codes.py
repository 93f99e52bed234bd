"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~tokenprobe.exceptions.TokenprobeError` subclass.
Shell wrappers can inspect the exit code to tell a denied authorization
from a network failure without parsing stderr.

Example::

    $ tokenprobe login github
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the provider denied the request
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""The provider rejected the authorization or the token exchange."""

EXIT_NOT_FOUND = 4
"""No client configuration or in-flight flow exists for the given name."""

EXIT_CONFLICT = 5
"""A flow for the name is already active, or a flow-control race was lost."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_BIND_ERROR = 7
"""The local redirect listener could not bind a port."""

EXIT_TIMEOUT = 8
"""No redirect arrived within the configured window."""

EXIT_CANCELLED = 130
"""The flow was cancelled (Ctrl-C or an explicit stop)."""
