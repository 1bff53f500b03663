"""doconvo CLI entry point."""

from __future__ import annotations

import importlib.metadata
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from doconvo.cli.chat import chat_cmd
from doconvo.cli.docs import docs_app
from doconvo.cli.errors import err_config
from doconvo.cli.sessions import sessions_app
from doconvo.config import ensure_global_config, load_config
from doconvo.errors import ConfigError
from doconvo.log import setup_logging

console = Console()


def _version() -> str:
    try:
        return importlib.metadata.version("doconvo")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"doconvo {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="doconvo",
    help=(
        "doconvo: chat with your documents.\n\n"
        "  doconvo docs add   Register a directory and embed its files.\n"
        "  doconvo chat       Ask questions answered only from those files."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Log debug output (prompts, retrieval) to the terminal."),
    ] = False,
    config: Annotated[
        Path | None,
        typer.Option("--config", hidden=True, help="Override ~/.doconvo/config.yaml (for testing)."),
    ] = None,
) -> None:
    """doconvo: chat with your documents."""
    try:
        if config is None:
            ensure_global_config()
        cfg = load_config(config)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    setup_logging(cfg.data_dir, debug=debug)
    ctx.obj = cfg


app.add_typer(docs_app, name="docs")
app.add_typer(sessions_app, name="sessions")
app.command("chat")(chat_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed doconvo version."""
    typer.echo(f"doconvo {_version()}")


if __name__ == "__main__":
    app()
