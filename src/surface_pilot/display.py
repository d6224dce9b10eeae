# display.py
# All terminal output for an agent run.
#
# This module owns presentation entirely. agent.py never formats strings
# for humans — it emits events, and render() turns them into rich output.
#
# Colour language:
#   cyan    — lifecycle (start, step progress)
#   yellow  — safety gate advice, retries
#   green   — success
#   red     — denials, failures, errors
#   magenta — oracle reasoning (thought / action)

import json

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from surface_pilot.events import (
    DoneEvent,
    ErrorEvent,
    Event,
    GateEvent,
    RetryEvent,
    StartEvent,
    StepEvent,
    StoppedEvent,
)
from surface_pilot.models import RunResult

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


# ---------------------------------------------------------------------------
# Pipeline entry
# ---------------------------------------------------------------------------


def banner(model: str, surface: str, policy_path: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Surface Pilot[/bold cyan]\n"
            "[dim]Perceive → decide → gate → act, one step at a time[/dim]\n\n"
            f"[dim]Oracle  :[/dim] [white]{model}[/white]\n"
            f"[dim]Surface :[/dim] [white]{surface}[/white]\n"
            f"[dim]Policy  :[/dim] [white]{policy_path}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def run_started(event: StartEvent) -> None:
    console.print()
    console.print(Rule("[cyan]NEW RUN[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(event.goal)}[/white]",
            title=_label("GOAL", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Cycle
# ---------------------------------------------------------------------------


def step(event: StepEvent) -> None:
    if event.action == "error_recovery":
        console.print(f"  [red]↳ {_mono(event.thought, 200)}[/red]")
        return
    console.print()
    console.print(f"[bold cyan]  STEP {event.ordinal}[/bold cyan]")
    console.print(f"  [magenta]Thought[/magenta]  [dim white]{_mono(event.thought, 200)}[/dim white]")
    console.print(
        f"  [magenta]Action[/magenta]   [bold white]{event.action}[/bold white]"
        f"  [dim]{_mono(json.dumps(event.params), 100)}[/dim]"
    )


def gate(event: GateEvent) -> None:
    if not event.allowed:
        console.print(
            Panel(
                f"[bold red]Action blocked.[/bold red]\n\n[white]{escape(event.reason)}[/white]",
                title=_label("SAFETY GATE: DENY ✗", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )
        return
    console.print(
        f"  [yellow]⚠ Confirmation advised:[/yellow] [white]{escape(event.confirm_reason)}[/white]"
    )


def retry(event: RetryEvent) -> None:
    console.print(
        f"  [yellow]↻ {event.stage} retry {event.attempt}[/yellow]"
        f"  [dim]{_mono(event.message, 140)}[/dim]"
    )


# ---------------------------------------------------------------------------
# Terminal events
# ---------------------------------------------------------------------------


def done(event: DoneEvent) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(event.summary)}[/white]\n\n[dim]{event.step_count} step(s)[/dim]",
            title=_label("DONE ✓", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )


def error(event: ErrorEvent) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(event.message)}[/bold white]\n\n[dim]{event.step_count} step(s)[/dim]",
            title=_label("ERROR", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def stopped(event: StoppedEvent) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(event.reason)}[/white]\n\n[dim]{event.step_count} step(s)[/dim]",
            title=_label("STOPPED", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


def final_result(result: RunResult) -> None:
    status = "[bold green]success[/bold green]" if result.success else "[bold red]failure[/bold red]"
    console.print(f"[dim]Result:[/dim] {status}  [dim]steps={result.step_count}[/dim]")
    console.print()


_RENDERERS = {
    "start": run_started,
    "step": step,
    "gate": gate,
    "retry": retry,
    "done": done,
    "error": error,
    "stopped": stopped,
}


def render(event: Event) -> None:
    """EventStream subscriber: print one lifecycle event."""
    _RENDERERS[event.type](event)
