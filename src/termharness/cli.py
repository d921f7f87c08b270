"""CLI entry point for termharness."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from termharness.ansi import clean
from termharness.config import HarnessConfig
from termharness.driver import SessionDriver
from termharness.errors import HarnessError
from termharness.keys import KEYS, lookup

app = typer.Typer(
    name="termharness",
    help="Drive interactive terminal programs through a pseudo-terminal.",
    no_args_is_help=True,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_steps(commands: list[str], keys: list[str]) -> list[tuple[str, str]]:
    """Commands run first, then keys, each group in the order given."""
    steps = [("command", c) for c in commands]
    steps.extend(("key", k) for k in keys)
    return steps


def _show(title: str, output: str, raw: bool) -> None:
    body = Text(repr(output)) if raw else Text(clean(output))
    console.print(Panel(body, title=title, title_align="left"))


@app.command()
def probe(
    program: str = typer.Argument(help="Program to drive"),
    args: list[str] | None = typer.Argument(None, help="Arguments for the program"),
    command: list[str] = typer.Option(
        [], "--command", "-c", help="Line command to send (repeatable)"
    ),
    key: list[str] = typer.Option(
        [], "--key", "-k", help="Named key to send after the commands (repeatable)"
    ),
    config_path: str | None = typer.Option(
        None, "--config", help="JSON harness config"
    ),
    raw: bool = typer.Option(False, "--raw", help="Show output with control sequences"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Start PROGRAM, send commands and keys, and print each settled response."""
    setup_logging(verbose)

    config = HarnessConfig.load(config_path)
    config = config.model_copy(update={"program": program, "args": list(args or [])})

    try:
        for name in key:
            lookup(name)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(2)

    try:
        with SessionDriver(config) as driver:
            _show("startup", driver.banner, raw)
            for kind, value in _parse_steps(command, key):
                if kind == "command":
                    output = driver.execute_command(value)
                else:
                    output = driver.send_key(value, allow_empty=True)
                _show(f"{kind}: {value}", output, raw)
    except HarnessError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def keys() -> None:
    """List the key names accepted by --key."""
    table = Table(title="Keys")
    table.add_column("Name")
    table.add_column("Sequence")
    for name, seq in KEYS.items():
        table.add_row(name, repr(seq))
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
