"""Preset commands -- manage ``<name>.preset.json`` files.

A preset holds the provider endpoints shared by every client of one
service.
"""

from __future__ import annotations

from typing import Optional

import typer

from tokenprobe.commands import exit_on_error
from tokenprobe.output import format_data, get_output, info, success, suggest


presets_app = typer.Typer(no_args_is_help=True)


@presets_app.command("list")
def presets_list() -> None:
    """List service presets and their endpoints."""
    from tokenprobe.config import list_presets, load_preset
    from tokenprobe.exceptions import ConfigError

    names = list_presets()
    if not names:
        info("No presets configured.")
        suggest("Add one: tokenprobe presets add NAME --auth-url URL --token-url URL")
        return

    rows: list[list[str]] = []
    for name in names:
        try:
            preset = load_preset(name)
        except ConfigError:
            rows.append([name, "error", "-"])
            continue
        rows.append([name, preset.auth_url, preset.token_url or "-"])
    get_output().print_table(
        ["Preset", "Authorization URL", "Token URL"], rows, title="Service Presets"
    )


@presets_app.command("show")
def presets_show(
    name: str = typer.Argument(help="Preset name."),
) -> None:
    """Show one preset."""
    from tokenprobe.config import load_preset

    with exit_on_error():
        preset = load_preset(name)
    format_data(preset.model_dump(mode="json", exclude_none=True))


@presets_app.command("add")
def presets_add(
    name: str = typer.Argument(help="Preset name."),
    auth_url: str = typer.Option(..., "--auth-url", help="Authorization endpoint."),
    token_url: Optional[str] = typer.Option(None, "--token-url", help="Token endpoint."),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="API base URL."),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing preset."),
) -> None:
    """Create or replace a service preset.

    Example::

        tokenprobe presets add github \\
            --auth-url https://github.com/login/oauth/authorize \\
            --token-url https://github.com/login/oauth/access_token
    """
    from pydantic import ValidationError

    from tokenprobe.config import list_presets, save_preset
    from tokenprobe.exceptions import InvalidUsageError
    from tokenprobe.models import ServicePreset

    with exit_on_error():
        if name in list_presets() and not force:
            raise InvalidUsageError(
                f'Preset "{name}" already exists. Pass --force to replace it.'
            )
        try:
            preset = ServicePreset(auth_url=auth_url, token_url=token_url, base_url=base_url)
        except ValidationError as exc:
            raise InvalidUsageError(f"Invalid preset: {exc}") from exc
        save_preset(name, preset)

    success(f'Preset "{name}" saved.')
    if token_url is None:
        suggest("Without --token-url the code can only be inspected, not exchanged.")
