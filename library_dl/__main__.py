"""
Console entry point for ``library-dl``.

Runs the Typer app and turns anything that escapes a command into a short
error panel with hints, so users never see a raw traceback unless they ask
for one with ``-vv``.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from library_dl.cli.app import app
from library_dl.cli.formatters import format_error_with_suggestions
from library_dl.exceptions import LibraryDlError


def _force_utf8_console() -> None:
    # Document names often contain characters the Windows code page lacks.
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass


def main() -> None:
    if os.name == "nt":
        _force_utf8_console()

    log = logging.getLogger("library_dl")
    console = Console()

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        # Downloads handle Ctrl-C themselves; this covers prompts and setup.
        console.print("\n[yellow]⚠️  Operation interrupted.[/yellow]")
        sys.exit(0)
    except LibraryDlError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
