"""tokenprobe -- run OAuth 2.0 authorization-code flows from the terminal.

For a named client configuration, tokenprobe builds the provider's
authorization URL, optionally starts a short-lived local listener to catch
the redirect, and exchanges the authorization code for tokens. Many named
flows can run at once; each delivers exactly one outcome.

Typical workflow::

    tokenprobe presets add github --auth-url ... --token-url ...
    tokenprobe clients add github --preset github --client-id abc
    tokenprobe login github

Modules:
    coordinator: The authorization-code exchange state machine.
    registry: In-flight authorization requests keyed by name.
    listener: Ephemeral redirect listener.
    exchanger: Code-for-token HTTP exchange.
    channel: One-shot, name-addressed result delivery.
    backend: Public operations bound to the on-disk configuration.
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration, clients and presets.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting with Rich.
"""

__version__ = "0.1.0"
