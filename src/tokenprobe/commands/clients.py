"""Client commands -- manage ``<name>.client.json`` files.

A client names the preset it authorizes against, its ``client_id``, where
its secret comes from, and the scopes and redirect URL to request.
"""

from __future__ import annotations

from typing import Optional

import typer

from tokenprobe.commands import exit_on_error
from tokenprobe.output import format_data, get_output, info, success, suggest, warning


clients_app = typer.Typer(no_args_is_help=True)


@clients_app.command("list")
def clients_list() -> None:
    """List configured clients with their preset and scopes.

    Clients that fail to load are shown with an ``error`` preset.
    """
    from tokenprobe.config import list_clients, load_client_config
    from tokenprobe.exceptions import ConfigError

    names = list_clients()
    if not names:
        info("No clients configured.")
        suggest("Add one: tokenprobe clients add NAME --preset PRESET --client-id ID")
        return

    rows: list[list[str]] = []
    for name in names:
        try:
            client = load_client_config(name)
        except ConfigError:
            rows.append([name, "error", "-", "-"])
            continue
        rows.append(
            [name, client.preset_name, client.client_id, " ".join(client.scopes) or "-"]
        )
    get_output().print_table(
        ["Client", "Preset", "Client ID", "Scopes"], rows, title="Configured Clients"
    )


@clients_app.command("show")
def clients_show(
    name: str = typer.Argument(help="Client name."),
) -> None:
    """Show one client configuration. A literal secret is masked."""
    from tokenprobe.config import load_client_config
    from tokenprobe.output import mask_secret

    with exit_on_error():
        client = load_client_config(name)
    data = client.model_dump(mode="json", exclude_none=True)
    if client.client_secret:
        data["client_secret"] = mask_secret(client.client_secret)
    format_data(data)


def _parse_params(values: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got: {item}", param_hint="--param")
        params[key] = value
    return params


@clients_app.command("add")
def clients_add(
    name: str = typer.Argument(help="Client name."),
    preset: str = typer.Option(..., "--preset", "-p", help="Service preset to use."),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client ID."),
    client_secret_source: Optional[str] = typer.Option(
        None,
        "--client-secret-source",
        "-s",
        help="Secret source: env:VAR, file:/path, prompt.",
    ),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="Literal client secret (stored in plain text)."
    ),
    redirect_url: Optional[str] = typer.Option(
        None, "--redirect-url", help="Registered redirect URL; its port pins the listener."
    ),
    scopes: list[str] = typer.Option([], "--scope", help="Scope to request (repeatable)."),
    auth_method: str = typer.Option(
        "client_secret_basic",
        "--auth-method",
        help="Token endpoint auth: client_secret_basic or client_secret_post.",
    ),
    params: list[str] = typer.Option(
        [], "--param", help="Extra authorization URL parameter KEY=VALUE (repeatable)."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing client."),
) -> None:
    """Create or replace a client configuration.

    Example::

        tokenprobe clients add github --preset github --client-id abc \\
            --client-secret-source env:GITHUB_SECRET --scope read:user
    """
    from pydantic import ValidationError

    from tokenprobe.config import list_clients, load_preset, save_client_config
    from tokenprobe.exceptions import InvalidUsageError
    from tokenprobe.models import ClientConfig

    with exit_on_error():
        load_preset(preset)
        if name in list_clients() and not force:
            raise InvalidUsageError(
                f'Client "{name}" already exists. Pass --force to replace it.'
            )
        try:
            client = ClientConfig(
                preset_name=preset,
                client_id=client_id,
                client_secret=client_secret,
                client_secret_source=client_secret_source,
                redirect_url=redirect_url,
                scopes=scopes,
                token_auth_method=auth_method,
                extra_params=_parse_params(params),
            )
        except ValidationError as exc:
            raise InvalidUsageError(f"Invalid client: {exc}") from exc
        save_client_config(name, client)

    if client_secret:
        warning("The client secret is stored in plain text. Prefer --client-secret-source.")
    success(f'Client "{name}" saved.')
    suggest(f"Authorize it: tokenprobe login {name}")
