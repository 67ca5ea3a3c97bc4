"""Terminal entrypoint: one input line, one orchestrated turn, one answer block."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, TextIO

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from grounded_chat.agent.orchestrator import TurnOrchestrator, TurnOutcome
from grounded_chat.agent.registry import ToolRegistry
from grounded_chat.agent.tools import register_builtin_tools
from grounded_chat.chat.session import ChatSession
from grounded_chat.client.base import ModelClient
from grounded_chat.client.gemini import GeminiModelClient
from grounded_chat.config import AssistantConfig, load_config
from grounded_chat.errors import AssistantError, UploadError
from grounded_chat.obs.log import configure_logging
from grounded_chat.obs.tracing import TraceStore
from grounded_chat.resources.lifecycle import ResourceLifecycleManager
from grounded_chat.types import FilePart, Turn

logger = logging.getLogger(__name__)

SEED_HISTORY: tuple[Turn, ...] = (
    Turn.of(
        "user",
        "Hello, I have loaded a machine learning document. Please help me understand its contents.",
    ),
    Turn.of(
        "model",
        "I'll help you understand the machine learning document. What would you like to know about it?",
    ),
)

ClientFactory = Callable[..., ModelClient]


class ShutdownSignal:
    """Turns SIGINT/SIGTERM into a graceful stop.

    While idle the signal interrupts input immediately. While a turn is in
    flight the first signal only marks the request so the turn drains; a
    second one aborts it. Once teardown starts signals are ignored so
    resource release always completes.
    """

    def __init__(self) -> None:
        self._requested = threading.Event()
        self._tearing_down = False
        self.busy: Callable[[], bool] = lambda: False

    @property
    def requested(self) -> bool:
        return self._requested.is_set()

    def request(self) -> None:
        self._requested.set()

    def begin_teardown(self) -> None:
        self._tearing_down = True

    @contextmanager
    def teardown_on_exit(self) -> Iterator[None]:
        """Ignore further signals once the wrapped block exits, however it exits."""
        try:
            yield
        finally:
            self.begin_teardown()

    @contextmanager
    def installed(self) -> Iterator["ShutdownSignal"]:
        if threading.current_thread() is not threading.main_thread():
            yield self
            return
        previous = {sig: signal.signal(sig, self._handle) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            yield self
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    def _handle(self, signum: int, frame: Any) -> None:
        if self._tearing_down:
            self.request()
            logger.info("Releasing resources; ignoring interrupt")
            return
        if self.busy() and not self.requested:
            self.request()
            logger.info("Shutdown requested; finishing the current turn first")
            return
        self.request()
        raise KeyboardInterrupt


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="grounded-chat",
        description="Chat with a Gemini model grounded in an uploaded document.",
    )
    parser.add_argument("--document", help="Path of the grounding document.")
    parser.add_argument("--model", help="Model used for the context cache.")
    parser.add_argument("--env-file", help="Read configuration from this .env file.")
    parser.add_argument(
        "--require-document",
        action="store_true",
        help="Fail instead of falling back to an ungrounded model.",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Attach the document to the conversation instead of creating a context cache.",
    )
    parser.add_argument("--question", help="Ask a single question and exit.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    return parser.parse_args(argv)


def open_chat_session(
    config: AssistantConfig,
    client: ModelClient,
    resources: ResourceLifecycleManager,
    registry: ToolRegistry,
) -> ChatSession:
    """Acquire grounding resources, pick the model and seed the session."""
    grounding = config.grounding
    declarations = registry.declarations()

    try:
        document = resources.acquire_document_if_present(grounding.document_path)
    except UploadError:
        if grounding.require_document:
            raise
        logger.warning("Upload of %s failed; continuing without grounding", grounding.document_path)
        document = None
    if document is None and grounding.require_document:
        raise UploadError(f"Grounding document not found: {grounding.document_path}")

    seed = list(SEED_HISTORY)
    if document is not None and grounding.use_cache:
        ttl = timedelta(seconds=grounding.cache_ttl_seconds) if grounding.cache_ttl_seconds else None
        resources.acquire_cache_if_applicable(
            document,
            grounding.cache_model,
            grounding.system_instruction,
            ttl=ttl,
            tools=declarations,
        )
        handle = resources.select_model(grounding.cache_model)
    elif document is not None:
        handle = resources.select_model(
            grounding.cache_model,
            system_instruction=grounding.system_instruction,
            tools=declarations,
        )
        seed[0] = Turn(
            role="user",
            parts=(FilePart(uri=document.uri, mime_type=document.mime_type), *seed[0].parts),
        )
    else:
        handle = resources.select_model(grounding.fallback_model, tools=declarations)

    session = ChatSession(client, handle, template=config.agent.query_template)
    session.seed(seed)
    return session


def _display(console: Console) -> Callable[[TurnOutcome], None]:
    def _show(outcome: TurnOutcome) -> None:
        for result in outcome.tool_results:
            status = "ok" if result.success else f"failed ({result.error})"
            console.print(f"[dim]tool {result.name}: {status}[/dim]")
        if not outcome.success:
            console.print(f"[red]Turn failed: {outcome.error}[/red]")
            return
        console.print(Panel(Markdown(outcome.answer), title="Answer", border_style="blue"))
        if outcome.truncated:
            console.print("[yellow]Stopped after too many tool calls.[/yellow]")

    return _show


def _read_lines(stream: TextIO) -> Iterator[str]:
    for line in stream:
        yield line


def main(
    argv: list[str] | None = None,
    *,
    client_factory: ClientFactory = GeminiModelClient.create,
    stdin: TextIO | None = None,
    console: Console | None = None,
) -> int:
    args = _parse_args(argv)
    console = console or Console()
    configure_logging(args.log_level)

    try:
        config = load_config(
            args.env_file,
            grounding={
                "document_path": args.document,
                "cache_model": args.model,
                "require_document": args.require_document or None,
                "use_cache": False if args.no_cache else None,
            },
        )
        client = client_factory(
            config.client.api_key.get_secret_value(),
            timeout_seconds=config.client.request_timeout_seconds,
        )
    except AssistantError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        return 1

    shutdown = ShutdownSignal()
    trace_store = TraceStore()
    try:
        with (
            shutdown.installed(),
            ResourceLifecycleManager(client) as resources,
            shutdown.teardown_on_exit(),
        ):
            registry = ToolRegistry()
            register_builtin_tools(registry, working_root=config.tools.working_root)
            session = open_chat_session(config, client, resources, registry)
            orchestrator = TurnOrchestrator(
                session, registry, config=config.agent, trace_store=trace_store
            )
            shutdown.busy = lambda: orchestrator.busy

            if args.question is not None:
                lines: Iterator[str] = iter([args.question])
            else:
                console.print(
                    "Chat started. Type your questions about the document (press Ctrl+C to exit)"
                )
                lines = _read_lines(stdin or sys.stdin)
            orchestrator.run(lines, _display(console), should_stop=lambda: shutdown.requested)
    except AssistantError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        return 1
    except KeyboardInterrupt:
        console.print("[dim]Shutting down...[/dim]")
    finally:
        client.close()

    summary = trace_store.summary()
    console.print(
        f"[dim]turns={summary['total_turns']} failed={summary['failed_turns']} "
        f"tool_calls={summary['tool_calls']} avg_latency_ms={summary['avg_latency_ms']:.0f}[/dim]"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
