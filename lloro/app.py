"""Lloro CLI: command-line front end for sessions and pinned page context.

Usage:
    lloro sessions
    lloro new --model gemini-3-flash-preview
    lloro pin https://example.com --title "Example" --file page.txt
    lloro send "Summarize the pinned page"
    lloro delete 3f2a
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from lloro.adapters.content import StaticContentProvider, StaticTabResolver
from lloro.engine.config import LLORO_HOME, LloroConfig, load_yaml_config
from lloro.engine.errors import LloroError, SessionNotFoundError
from lloro.engine.orchestrator import ChatTurnOrchestrator
from lloro.engine.pinning import ContextPinning
from lloro.engine.rpc_client import RpcClient
from lloro.engine.session_controller import SessionLifecycleController
from lloro.engine.status import BackendStatus, HealthMonitor
from lloro.shared.models.message import MessageRole
from lloro.shared.models.session import SessionSummary
from lloro.shared.services.persistence import SessionStore
from lloro.shared.services.preferences import UserPreferences
from lloro.shared.services.session_naming import summarize_text
from lloro.shared.services.storage import JsonFileStorage

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lloro",
        description="Chat with a language-model backend using pinned page context",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--storage", default=None, help="Session storage file (default: ~/.lloro/storage.json)")
    parser.add_argument("--backend", default=None, help="Backend base URL (default: http://localhost:6363)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sessions", help="List sessions, most recent first")

    new = sub.add_parser("new", help="Start a new session and make it active")
    new.add_argument("--model", default=None)

    switch = sub.add_parser("switch", help="Make a session active")
    switch.add_argument("session_id", help="Session id or unique prefix")

    delete = sub.add_parser("delete", help="Delete a session permanently")
    delete.add_argument("session_id", help="Session id or unique prefix")
    delete.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")

    show = sub.add_parser("show", help="Print a session's messages and pinned pages")
    show.add_argument("session_id", nargs="?", default=None)

    pin = sub.add_parser("pin", help="Pin page content into the active session")
    pin.add_argument("url")
    pin.add_argument("--title", default=None)
    source = pin.add_mutually_exclusive_group(required=True)
    source.add_argument("--content", default=None, help="Page text")
    source.add_argument("--file", default=None, help="Read page text from a file")

    send = sub.add_parser("send", help="Send a message in the active session")
    send.add_argument("message", nargs="+")
    send.add_argument("--page", default=None, help="URL of the page the user is viewing")
    send.add_argument("--page-title", default=None)
    send.add_argument("--page-file", default=None, help="Text of the page the user is viewing")

    status = sub.add_parser("status", help="Probe the backend health endpoint")
    status.add_argument(
        "--watch", action="store_true",
        help="Keep polling every health_interval_seconds while the backend is up",
    )

    model = sub.add_parser("model", help="Re-initialize the active session with a model")
    model.add_argument("model")

    prefs = sub.add_parser("prefs", help="Show or change preferences")
    prefs.add_argument("--auto-pin", choices=("on", "off"), default=None)

    return parser


def _load_config(args: argparse.Namespace) -> LloroConfig:
    config = LloroConfig.from_env()
    if args.config:
        config = load_yaml_config(args.config, base=config)
    if args.storage:
        config.storage_path = Path(args.storage).expanduser()
    if args.backend:
        config.backend_url = args.backend
    return config


def _configure_logging(config: LloroConfig, verbose: bool) -> None:
    level_name = "DEBUG" if verbose else config.log_level.upper()
    level = getattr(logging, level_name, logging.INFO)
    log_dir = LLORO_HOME / "logs"

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "lloro.log", maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError:
        pass  # Read-only home: stderr logging only.
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(level if verbose else logging.WARNING)
    root.addHandler(stream_handler)


def resolve_session_ref(store: SessionStore, ref: str) -> str:
    """Accept a full session id or an unambiguous prefix of one."""
    if ref in store:
        return ref
    matches = [s.id for s in store.list_sessions() if s.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    raise SessionNotFoundError(ref)


def _print_summaries(summaries: list[SessionSummary]) -> None:
    table = Table(title="Sessions")
    table.add_column("", width=1)
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Model")
    table.add_column("Messages", justify="right")
    table.add_column("Pinned", justify="right")
    table.add_column("Last active")
    for s in summaries:
        model = s.model or "-"
        if not s.initialized:
            model += " (uninitialized)"
        table.add_row(
            "*" if s.active else "",
            s.session_id[:8],
            escape(s.title),
            model,
            str(s.message_count),
            str(s.pinned_count),
            s.last_active_at.astimezone().strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


async def _run(args: argparse.Namespace, config: LloroConfig) -> int:
    store = SessionStore(JsonFileStorage(config.storage_path), config.default_model)
    status = BackendStatus()
    preferences = UserPreferences.load()
    provider = StaticContentProvider()
    tab_resolver = StaticTabResolver()

    async with RpcClient(config) as rpc:
        controller = SessionLifecycleController(store, rpc, status=status)
        pinning = ContextPinning(store, provider, policy=config.delivery_policy)
        orchestrator = ChatTurnOrchestrator(
            store, rpc, pinning,
            status=status, preferences=preferences, tab_resolver=tab_resolver,
        )
        await controller.start()

        if args.command == "sessions":
            _print_summaries(controller.list_sessions())

        elif args.command == "new":
            session = await controller.new_session(args.model)
            console.print(f"Started session [bold]{session.id}[/bold] ({session.model})")
            if not controller.is_initialized(session.id):
                err_console.print(f"[yellow]Backend not initialized: {status.text}[/yellow]")

        elif args.command == "switch":
            session = await controller.switch_session(resolve_session_ref(store, args.session_id))
            console.print(f"Active session: [bold]{session.id}[/bold]")

        elif args.command == "delete":
            session_id = resolve_session_ref(store, args.session_id)
            summary = controller.describe_session(session_id)
            if not args.yes:
                question = (
                    f"Delete '{summary.title}' with {summary.message_count} message(s) "
                    f"and {summary.pinned_count} pinned page(s)? This cannot be undone."
                )
                if not Confirm.ask(question, default=False, console=console):
                    console.print("Cancelled.")
                    return 0
            active = await controller.delete_session(session_id)
            console.print(f"Deleted {session_id}. Active session: [bold]{active.id}[/bold]")

        elif args.command == "show":
            sid = (
                resolve_session_ref(store, args.session_id)
                if args.session_id else controller.active.session_id
            )
            session = store.get(sid)
            _print_summaries([controller.describe_session(sid)])
            for ctx in session.pinned_tabs.values():
                console.print(
                    f"[dim]pinned[/dim] {escape(ctx.title)} <{escape(ctx.source_url)}> "
                    f"{escape('[' + ctx.state.value + ']')}"
                )
                if ctx.content:
                    console.print(f"  [dim]{escape(summarize_text(ctx.content, max_words=20))}[/dim]")
            for msg in session.messages:
                if msg.role is MessageRole.USER:
                    console.print(f"[bold cyan]you:[/bold cyan] {escape(msg.text)}")
                else:
                    console.print(Markdown(msg.text))

        elif args.command == "pin":
            text = args.content
            if args.file:
                text = Path(args.file).read_text(encoding="utf-8")
            provider.add_page(args.url, args.title or args.url, text)
            session = controller.active.session
            already = pinning.is_pinned(session, args.url)
            ctx = await pinning.pin(session, args.url)
            if already:
                console.print(f"{ctx.source_url} is already pinned in this session.")
            else:
                console.print(f"Pinned [bold]{escape(ctx.title)}[/bold] ({len(ctx.content)} characters)")

        elif args.command == "send":
            if args.page:
                tab_resolver.url = args.page
                if args.page_file:
                    provider.add_page(
                        args.page,
                        args.page_title or args.page,
                        Path(args.page_file).read_text(encoding="utf-8"),
                    )
                if not preferences.auto_pin_active_tab:
                    err_console.print("[dim]Auto-pin is off; --page is ignored.[/dim]")
            reply = await orchestrator.send_turn(controller.active.session, " ".join(args.message))
            console.print(Markdown(reply))

        elif args.command == "status":
            monitor = HealthMonitor(rpc, status, config.health_interval_seconds)
            health = await (monitor.start() if args.watch else monitor.refresh())
            console.print(f"{status.text} ({status.state.value})")
            if health.error:
                err_console.print(f"[dim]{escape(health.error)}[/dim]")
            try:
                last_seen = status.updated_at
                while monitor.running:
                    await asyncio.sleep(config.health_interval_seconds)
                    if status.updated_at != last_seen:
                        last_seen = status.updated_at
                        console.print(f"{status.text} ({status.state.value})")
            finally:
                await monitor.stop()
            return 0 if health.alive else 1

        elif args.command == "model":
            session = await controller.select_model(args.model)
            console.print(f"Session {session.id[:8]} uses {session.model} ({status.text})")

        elif args.command == "prefs":
            if args.auto_pin is not None:
                preferences.auto_pin_active_tab = args.auto_pin == "on"
                preferences.save()
            console.print(f"auto_pin_active_tab = {preferences.auto_pin_active_tab}")

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = _load_config(args)
    _configure_logging(config, args.verbose)
    logger.debug("lloro %s (pid=%s)", args.command, os.getpid())

    try:
        return asyncio.run(_run(args, config))
    except LloroError as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        return 1
    except KeyboardInterrupt:
        err_console.print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
