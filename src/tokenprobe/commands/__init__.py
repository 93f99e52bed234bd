"""Built-in CLI sub-commands for tokenprobe.

* :mod:`~tokenprobe.commands.flow` -- ``login``, ``manual`` and ``url``.
* :mod:`~tokenprobe.commands.clients` -- manage ``<name>.client.json`` files.
* :mod:`~tokenprobe.commands.presets` -- manage ``<name>.preset.json`` files.
* :mod:`~tokenprobe.commands.config` -- view and modify ``config.json``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer

from tokenprobe.exceptions import TokenprobeError
from tokenprobe.output import error


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Print a :class:`TokenprobeError` and exit with its code."""
    try:
        yield
    except TokenprobeError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
