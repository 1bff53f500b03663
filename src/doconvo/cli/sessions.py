"""doconvo sessions CLI commands.

Commands:
  doconvo sessions list         show saved chat sessions
  doconvo sessions remove ID    delete a session
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from doconvo.cli.errors import err_session_not_found
from doconvo.cli.runtime import get_config, open_runtime

console = Console()

sessions_app = typer.Typer(
    name="sessions",
    help="Manage saved chat sessions.",
    add_completion=False,
)


@sessions_app.command("list")
def sessions_list_cmd(ctx: typer.Context) -> None:
    """List saved chat sessions."""
    with open_runtime(get_config(ctx)) as rt:
        sessions = rt.repo.list_sessions()

    if not sessions:
        console.print("[yellow]No sessions yet.[/]\n  Start one:  doconvo chat")
        raise typer.Exit(0)

    table = Table(title="Sessions", show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Messages", justify="right")
    table.add_column("Created")

    for conv in sessions:
        table.add_row(
            str(conv.id),
            conv.display_title,
            str(len(conv.messages)),
            conv.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@sessions_app.command("remove")
def sessions_remove_cmd(
    ctx: typer.Context,
    session_id: Annotated[int, typer.Argument(help="Session id (see doconvo sessions list).")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete a chat session."""
    with open_runtime(get_config(ctx)) as rt:
        conv = rt.repo.get_session(session_id)
        if conv is None:
            console.print(err_session_not_found(session_id))
            raise typer.Exit(1)

        if not yes:
            if not typer.confirm(f"Delete session '{conv.display_title}'?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        rt.repo.delete_session(session_id)
        console.print(f"[green]✓[/] Deleted session [bold]{conv.display_title}[/]")
