"""
interfaces/cli.py — Signal Analyst CLI Interface

Interactive REPL for the analyst loop. Uses rich for terminal rendering;
blocking input runs in a worker thread so the event loop stays free.

Features:
  - Live event stream: thinking spinner, model messages as Markdown panels,
    each code block and its result as it runs
  - Inline confirmation for service calls (deny is the default answer)
  - /help, /status, /continue, /clear, /reset, /history, exit
  - One-shot mode for scripts: python main.py --ask "are any lights on?"

Usage:
    python main.py
    python main.py --log-level DEBUG
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table

from agent.context import RunContext
from agent.events import AnalystEvent
from agent.session import AnalystSession
from brain.types import Role
from config.settings import Settings
from host.homeassistant import HomeAssistantHost
from host.types import HostCallRequest
from observability.logger import get_logger

log = get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

_HELP_TEXT = """
## Signal Analyst Commands

| Command | Description |
|---------|-------------|
| *any text* | Ask the analyst a question about your Home Assistant |
| `/continue` | Keep investigating after the iteration limit was reached |
| `/status` | Show session status and stats |
| `/history` | Show the conversation so far |
| `/clear` | Clear conversation history (sandbox variables are kept) |
| `/reset` | Clear conversation history and sandbox variables |
| `/help` | Show this help message |
| `exit` / `quit` / Ctrl+D | Exit |

**Tips:**
- Service calls always ask before running; just press Enter to refuse
- Results the analyst sees are cut to 20 rows; ask for filtering if needed
"""

_HISTORY_PREVIEW_CHARS = 160


class CLIInterface:
    """
    Interactive REPL for Signal Analyst.

    Wires together: Settings → HA host → LLM → Interpreter + Bridge → Session
    then runs a rich-powered async input loop.
    """

    def __init__(self, settings: Settings, console: Optional[Console] = None):
        self.settings = settings
        self.console = console or Console()
        self._session: Optional[AnalystSession] = None
        self._host: Optional[HomeAssistantHost] = None
        self._context: Optional[RunContext] = None
        self._status: Optional[Status] = None

    # ── Startup ───────────────────────────────────────────────────────────────

    def init_components(self) -> None:
        self._host = HomeAssistantHost.from_settings(self.settings)
        self._session = AnalystSession.from_settings(self.settings, ha_api=self._host.api)
        self._context = RunContext(
            fulfiller=self._host.fulfill,
            approver=self._approve,
            shell_callback=None,
        )
        log.info("cli.initialised", session_id=self._session.id,
                 provider=self.settings.llm.provider)

    async def start(self) -> None:
        """Initialise all components then run the REPL loop."""
        self.init_components()
        self._print_banner()
        if not await self._session.llm_client.health_check():
            self.console.print(
                "[yellow]⚠ The model provider did not answer a health check. "
                "Questions may fail until it is reachable.[/]"
            )
        await self._repl_loop()

    async def ask_once(self, question: str) -> int:
        """Answer one question and return an exit code (0 = answered)."""
        self.init_components()
        events = await self._run_and_render(question)
        return 0 if events and events[-1].type == "done" else 1

    def _print_banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]{self.settings.agent_name}[/]  "
                f"[bold]v{self.settings.agent.version}[/]  ·  "
                f"LLM: [cyan]{self.settings.llm.provider}[/]/[cyan]{self.settings.llm.model}[/]  ·  "
                f"HA: [dim]{self.settings.home_assistant.url}[/]  ·  "
                f"Session: [dim]{self._session.id}[/]\n\n"
                f"Ask a question or type [bold]/help[/] for commands. "
                f"[bold]exit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _print_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        while True:
            try:
                user_input = await asyncio.to_thread(self.console.input, self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self._dispatch(user_input)

        log.info("cli.shutdown", session_id=self._session.id if self._session else None)

    def _build_prompt(self) -> str:
        return f"[bold cyan]analyst[/][dim][{self._session.turn_count}][/]> "

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def _dispatch(self, raw: str) -> None:
        """Route input to the correct handler."""
        if not raw.startswith("/"):
            await self._run_and_render(raw)
            return

        cmd = raw.split(maxsplit=1)[0].lower()
        handlers = {
            "/help":     self._print_help,
            "/status":   self._cmd_status,
            "/history":  self._cmd_history,
            "/clear":    self._cmd_clear,
            "/reset":    self._cmd_reset,
            "/continue": self._cmd_continue,
        }
        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
            return
        result = handler()
        if asyncio.iscoroutine(result):
            await result

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _cmd_continue(self) -> None:
        if self._session.last_outcome != "max_iterations":
            self.console.print("[dim]Nothing to continue: the last question finished.[/]")
            return
        await self._run_and_render(None)

    def _cmd_status(self) -> None:
        table = Table(box=box.SIMPLE, show_header=False)
        table.add_column("key", style="dim")
        table.add_column("value")
        for key, value in self._session.status_summary().items():
            table.add_row(key, str(value))
        self.console.print(table)

    def _cmd_history(self) -> None:
        turns = [m for m in self._session.messages if m.role != Role.SYSTEM]
        if not turns:
            self.console.print("[dim]No conversation yet.[/]")
            return
        table = Table(box=box.SIMPLE)
        table.add_column("#", style="dim", justify="right")
        table.add_column("role")
        table.add_column("content")
        for i, msg in enumerate(turns, 1):
            preview = msg.content.replace("\n", " ")
            if len(preview) > _HISTORY_PREVIEW_CHARS:
                preview = preview[:_HISTORY_PREVIEW_CHARS] + "…"
            colour = "cyan" if msg.role == Role.ASSISTANT else "green"
            table.add_row(str(i), f"[{colour}]{msg.role.value}[/]", preview)
        self.console.print(table)

    def _cmd_clear(self) -> None:
        self._session.clear_conversation()
        self.console.print("[dim]✓ Conversation history cleared.[/]")

    def _cmd_reset(self) -> None:
        self._session.clear_conversation()
        self._session.executor.interpreter.reset()
        self.console.print("[dim]✓ Conversation and sandbox variables cleared.[/]")

    # ── Running a question ────────────────────────────────────────────────────

    async def _run_and_render(self, question: Optional[str]) -> list[AnalystEvent]:
        """Run (or resume, when question is None) and render events as they arrive."""
        events: list[AnalystEvent] = []
        self.console.print()
        try:
            if question is None:
                events = await self._session.resume(self._context)
                for event in events:
                    self._render_event(event)
            else:
                async for event in self._session.stream(question, self._context):
                    events.append(event)
                    self._render_event(event)
        finally:
            self._stop_spinner()
        return events

    def _render_event(self, event: AnalystEvent) -> None:
        if event.type == "thinking":
            self._start_spinner(f"Thinking… (iteration {event.iteration})")
            return
        self._stop_spinner()

        if event.type == "message":
            text = event.text.strip()
            if text:
                self.console.print(Panel(
                    Markdown(text),
                    title="[dim]investigating[/]" if event.intermediate else "[cyan]answer[/]",
                    border_style="dim" if event.intermediate else "cyan",
                    padding=(0, 2),
                ))

        elif event.type == "code_running":
            self.console.print(Syntax(event.code, "python", theme="ansi_dark", line_numbers=False))
            self._start_spinner("Running…")

        elif event.type == "code_result":
            if event.denied:
                style, title = "yellow", "[yellow]refused[/]"
            elif event.is_error:
                style, title = "red", "[red]error[/]"
            else:
                style, title = "green", "[green]result[/]"
            self.console.print(Panel(event.output_text, title=title, border_style=style, padding=(0, 1)))

        elif event.type == "error":
            self.console.print(Panel(event.text, title="[red]Error[/]", border_style="red", padding=(0, 1)))

        elif event.type == "done":
            if event.text:
                self.console.print(f"[dim]{event.text}[/]")

        elif event.type == "max_iterations":
            self.console.print(f"[yellow]{event.text}[/] [dim]Type /continue to keep going.[/]")

    def _start_spinner(self, message: str) -> None:
        self._stop_spinner()
        self._status = self.console.status(f"[dim cyan]{message}[/]", spinner="dots")
        self._status.start()

    def _stop_spinner(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    # ── Confirmation ──────────────────────────────────────────────────────────

    async def _approve(self, request: HostCallRequest) -> bool:
        """Approver for effectful host calls: ask inline, default No."""
        self._stop_spinner()
        params = request.params
        target = f"{params.get('domain', '?')}.{params.get('service', '?')}"
        data = params.get("service_data") or {}
        self.console.print()
        self.console.print(Panel(
            f"[bold]{target}[/]\n\n{json.dumps(data, indent=2, default=str)}",
            title="[bold yellow]⚠ Service call requested[/]",
            border_style="yellow",
            padding=(0, 2),
        ))
        approved = await asyncio.to_thread(
            Confirm.ask, "  Run this service call?", default=False, console=self.console,
        )
        status = "[green]✓ Approved[/]" if approved else "[red]✗ Refused[/]"
        self.console.print(f"  {status}\n")
        return approved


# ── Public entry points ───────────────────────────────────────────────────────


async def run_cli(settings: Settings, log) -> None:
    """Entry point called from main.py for the interactive REPL."""
    cli = CLIInterface(settings=settings)
    log.info("cli.starting")
    try:
        await cli.start()
    except KeyboardInterrupt:
        log.info("cli.interrupted")


async def run_once(settings: Settings, question: str, log) -> int:
    """Entry point called from main.py for --ask."""
    log.info("cli.one_shot", question=question[:120])
    return await CLIInterface(settings=settings).ask_once(question)
