"""doconvo chat: interactive grounded chat over all scanned documents.

Usage:
  doconvo chat                 start a new session
  doconvo chat --session 3     continue session 3

Inside the REPL:
  Ctrl-C while a reply streams   cancel the reply
  /exit (or Ctrl-D)              quit
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from doconvo.cli.errors import (
    err_no_api_key,
    err_persistence,
    err_session_not_found,
    err_turn_failed,
    warn_no_documents,
)
from doconvo.cli.runtime import Runtime, get_config, open_runtime
from doconvo.db.models import ROLE_USER, Conversation
from doconvo.errors import PersistenceError, ProviderError
from doconvo.rag.llm_client import LiteLLMChat, validate_api_key
from doconvo.rag.orchestrator import (
    FALLBACK_REPLY,
    ChatEngine,
    DoneEvent,
    ErrorEvent,
    TokenEvent,
    TurnHandle,
)

console = Console()

_EXIT_COMMANDS = {"/exit", "/quit"}


def chat_cmd(
    ctx: typer.Context,
    session: Annotated[
        int | None,
        typer.Option("--session", "-s", help="Continue an existing session (see doconvo sessions list)."),
    ] = None,
) -> None:
    """Chat with your documents."""
    cfg = get_config(ctx)
    for model in dict.fromkeys([cfg.convo.model, cfg.title.model, cfg.embedding.model]):
        try:
            validate_api_key(model)
        except ProviderError as exc:
            console.print(err_no_api_key(model, str(exc)))
            raise typer.Exit(1)

    with open_runtime(cfg) as rt:
        conversation = _load_conversation(rt, session)
        documents = [d for d in rt.repo.list_documents() if d.last_scan_time is not None]
        if not documents:
            console.print(warn_no_documents())

        engine = ChatEngine(
            chat=LiteLLMChat(cfg.convo.model, temperature=cfg.convo.temperature),
            title_llm=LiteLLMChat(cfg.title.model, temperature=cfg.title.temperature),
            index=rt.index,
            embedding_fn=rt.embedding_fn,
            documents=documents,
            conversation=conversation,
            store=rt.repo,
            rag=cfg.rag,
            chunk_overlap=cfg.chunker.overlap,
        )
        with engine:
            _repl(engine, rt)


# ------------------------------------------------------------------
# REPL
# ------------------------------------------------------------------


def _load_conversation(rt: Runtime, session_id: int | None) -> Conversation:
    if session_id is None:
        return Conversation()
    conversation = rt.repo.get_session(session_id)
    if conversation is None:
        console.print(err_session_not_found(session_id))
        raise typer.Exit(1)
    console.print(f"[bold]{conversation.display_title}[/]")
    for message in conversation.messages:
        style = "bold green" if message.role == ROLE_USER else ("red" if message.failed else "")
        prefix = "You › " if message.role == ROLE_USER else ""
        console.print(f"{prefix}{message.content}", style=style, markup=False, highlight=False)
    return conversation


def _repl(engine: ChatEngine, rt: Runtime) -> None:
    console.print("[dim]Type your question. Ctrl-C cancels a reply, /exit quits.[/]")
    announced_title = engine.conversation.title
    while True:
        try:
            text = console.input("\n[bold green]You ›[/] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            return
        if not text:
            continue
        if text in _EXIT_COMMANDS:
            return

        engine.documents = [
            d for d in rt.repo.list_documents() if d.last_scan_time is not None
        ]
        try:
            handle = engine.submit(text)
        except PersistenceError as exc:
            console.print(err_persistence(str(exc)))
            continue

        _stream_reply(handle)

        if engine.conversation.title and engine.conversation.title != announced_title:
            announced_title = engine.conversation.title
            console.print(f"[dim]Session title: {announced_title}[/]")


def _stream_reply(handle: TurnHandle) -> None:
    """Print the turn's tokens as they arrive; Ctrl-C cancels the turn."""
    console.print()
    try:
        _print_events(handle)
    except KeyboardInterrupt:
        handle.cancel()
        _print_events(handle, quiet=True)
        console.print("\n[dim](cancelled)[/]")
    handle.join()


def _print_events(handle: TurnHandle, quiet: bool = False) -> None:
    for event in handle.events():
        if isinstance(event, TokenEvent):
            if not quiet:
                console.print(event.content, end="", markup=False, highlight=False)
        elif isinstance(event, ErrorEvent):
            console.print(f"\n{FALLBACK_REPLY}", style="red", markup=False)
            console.print(err_turn_failed(str(event.error)))
        elif isinstance(event, DoneEvent) and not event.cancelled:
            console.print()
