"""Config commands -- view and modify the global settings file.

``config.json`` in the tokenprobe config directory holds the listener
settings (host, callback path, redirect timeout, state-mismatch policy), the
token endpoint HTTP settings, and whether ``login`` opens a browser.
"""

from __future__ import annotations

from typing import Any

import typer

from tokenprobe.output import error, format_data, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration, ``TOKENPROBE_*`` overrides included.

    Example::

        tokenprobe config show
        tokenprobe --json config show
    """
    from tokenprobe.commands import exit_on_error
    from tokenprobe.config import get_config_dir, resolve_settings

    with exit_on_error():
        settings = resolve_settings()
    info(f"Config directory: {get_config_dir()}")
    format_data(settings.model_dump(mode="json"))


def _coerce(key: str, current: Any, value: str) -> Any:
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if value.lower() == "none":
        return None
    if isinstance(current, (int, float)):
        try:
            return float(value)
        except ValueError:
            error(f"Expected a number for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'listener.timeout_seconds')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is coerced to the current field's type and the result is
    validated before saving. ``none`` clears an optional field.

    Example::

        tokenprobe config set listener.timeout_seconds 120
        tokenprobe config set listener.state_mismatch ignore
        tokenprobe config set open_browser false
    """
    from pydantic import ValidationError

    from tokenprobe.commands import exit_on_error
    from tokenprobe.config import load_global_config, save_global_config
    from tokenprobe.models import GlobalConfig

    with exit_on_error():
        config = load_global_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Reset the configuration to defaults."""
    from tokenprobe.config import save_global_config
    from tokenprobe.models import GlobalConfig

    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
