"""doconvo rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from doconvo.cli.errors import err_document_not_found
    console.print(err_document_not_found(3))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(model: str, detail: str) -> str:
    """Provider key for *model* is missing from the environment."""
    return (
        f"[red]Error:[/] Cannot use model '{model}'.\n"
        f"  {detail}\n"
        "  Or pick a local model in ~/.doconvo/config.yaml (e.g. ollama/llama3.2)."
    )


def err_config(detail: str) -> str:
    """Config file is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix ~/.doconvo/config.yaml (or the DOCONVO_* environment variables) and retry."
    )


def err_path_not_found(path: str) -> str:
    """Document root does not exist."""
    return (
        f"[red]Error:[/] Directory not found: '{path}'\n"
        "  Pass an existing directory with --path."
    )


def err_document_not_found(document_id: int) -> str:
    return (
        f"[yellow]Document not found:[/] no document with id {document_id}.\n"
        "  Run:  doconvo docs list  to see all documents."
    )


def err_session_not_found(session_id: int) -> str:
    return (
        f"[yellow]Session not found:[/] no session with id {session_id}.\n"
        "  Run:  doconvo sessions list  to see all sessions."
    )


def err_scan_failed(detail: str) -> str:
    """A document scan ended with an error."""
    return (
        f"[red]Error:[/] Scan failed: {detail}\n"
        "  Check that the embedding model is reachable, then run:  doconvo docs scan <id>"
    )


def err_turn_failed(detail: str) -> str:
    """A chat turn failed (retrieval or provider)."""
    return (
        f"[red]Error:[/] {detail}\n"
        "  Check the model settings and connectivity, then send your message again."
    )


def err_persistence(detail: str) -> str:
    return (
        f"[red]Error:[/] Could not write to the database: {detail}\n"
        "  Check permissions on the data directory (see --debug for details)."
    )


def warn_no_documents() -> str:
    """Chat started with no scanned documents."""
    return (
        "[yellow]⚠[/] No scanned documents: every answer will be \"I don't have this information\".\n"
        "  Add one:  doconvo docs add --name NAME --path DIR"
    )
