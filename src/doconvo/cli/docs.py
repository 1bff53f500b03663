"""doconvo docs CLI commands.

Commands:
  doconvo docs add --name NAME --path DIR   register a directory (and scan it)
  doconvo docs list                         show documents and scan status
  doconvo docs scan ID                      (re-)embed a document's files
  doconvo docs remove ID                    delete a document and its collection
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from doconvo.cli.errors import (
    err_document_not_found,
    err_no_api_key,
    err_path_not_found,
    err_persistence,
    err_scan_failed,
)
from doconvo.cli.runtime import Runtime, get_config, open_runtime
from doconvo.db.models import SourceDocument
from doconvo.errors import PersistenceError, ProviderError
from doconvo.ingest.chunker import Chunker
from doconvo.ingest.scanner import DocumentScanner, ScanProgress
from doconvo.rag.llm_client import validate_api_key

console = Console()

docs_app = typer.Typer(
    name="docs",
    help="Manage documents (directories the assistant answers from).",
    add_completion=False,
)


@docs_app.command("add")
def docs_add_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Option("--name", "-n", help="Display name (used as the document label).")],
    path: Annotated[Path, typer.Option("--path", "-p", help="Root directory of the document's files.")],
    scan: Annotated[
        bool,
        typer.Option("--scan/--no-scan", help="Scan and embed the files right away."),
    ] = True,
) -> None:
    """Register a directory as a document."""
    if not path.is_dir():
        console.print(err_path_not_found(str(path)))
        raise typer.Exit(1)

    cfg = get_config(ctx)
    with open_runtime(cfg) as rt:
        document = SourceDocument(name=name, path=str(path.resolve()))
        try:
            rt.repo.save_document(document)
        except PersistenceError as exc:
            console.print(err_persistence(str(exc)))
            raise typer.Exit(1)
        console.print(f"[green]✓[/] Added document [bold]{name}[/] (id {document.id})")

        if scan:
            _run_scan(rt, document)


@docs_app.command("list")
def docs_list_cmd(ctx: typer.Context) -> None:
    """List all documents and their scan status."""
    with open_runtime(get_config(ctx)) as rt:
        documents = rt.repo.list_documents()

    if not documents:
        console.print(
            "[yellow]No documents yet.[/]\n"
            "  Add one:  doconvo docs add --name NAME --path DIR"
        )
        raise typer.Exit(0)

    table = Table(title="Documents", show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Path")
    table.add_column("Files", justify="right")
    table.add_column("Last scan")

    for doc in documents:
        last_scan = (
            doc.last_scan_time.strftime("%Y-%m-%d %H:%M")
            if doc.last_scan_time
            else "[yellow]never[/]"
        )
        table.add_row(str(doc.id), doc.name, doc.path, str(doc.scanned_file_count), last_scan)

    console.print(table)


@docs_app.command("scan")
def docs_scan_cmd(
    ctx: typer.Context,
    document_id: Annotated[int, typer.Argument(help="Document id (see doconvo docs list).")],
) -> None:
    """Scan a document's directory and replace its embeddings."""
    with open_runtime(get_config(ctx)) as rt:
        document = rt.repo.get_document(document_id)
        if document is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)
        _run_scan(rt, document)


@docs_app.command("remove")
def docs_remove_cmd(
    ctx: typer.Context,
    document_id: Annotated[int, typer.Argument(help="Document id (see doconvo docs list).")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a document and all of its embeddings."""
    with open_runtime(get_config(ctx)) as rt:
        document = rt.repo.get_document(document_id)
        if document is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)

        console.print(f"\nRemove document: [bold]{document.name}[/] ({document.path})")
        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        rt.repo.delete_document(document_id, rt.index)
        console.print(f"[green]✓[/] Removed document [bold]{document.name}[/]")


# ------------------------------------------------------------------
# Scan runner
# ------------------------------------------------------------------


def _run_scan(rt: Runtime, document: SourceDocument) -> None:
    """Scan *document*, printing progress; Ctrl-C cancels the scan."""
    try:
        validate_api_key(rt.config.embedding.model)
    except ProviderError as exc:
        console.print(err_no_api_key(rt.config.embedding.model, str(exc)))
        raise typer.Exit(1)

    scanner = DocumentScanner(
        rt.index,
        rt.embedding_fn,
        chunker=Chunker(rt.config.chunker.chunk_size, rt.config.chunker.overlap),
        store=rt.repo,
    )
    handle = scanner.start(document)
    final: ScanProgress | None = None

    with console.status(f"Scanning {document.name}…") as status:
        try:
            for progress in handle.progress():
                status.update(progress.content)
                final = progress
                if not progress.terminal:
                    console.print(f"  [dim]{progress.content}[/]", highlight=False)
        except KeyboardInterrupt:
            handle.cancel()
            for progress in handle.progress():
                final = progress
    handle.join()

    if final is None or final.error is not None:
        console.print(err_scan_failed(final.content if final else "no progress reported"))
        raise typer.Exit(1)

    console.print(
        f"[green]✓[/] {final.content}: {final.scanned_file_count} files in "
        f"[bold]{document.name}[/]"
    )
