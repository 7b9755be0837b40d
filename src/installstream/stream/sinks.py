"""Render targets for a stream session: log panel, progress bar, status indicator.

Only the log sink is mandatory. The rich-backed sinks drive the CLI.
"""

from dataclasses import dataclass
from typing import Protocol

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskID, TextColumn

from ..core.constants import STATUS_DISPLAY, STATUS_DISCONNECTED
from ..core.events import LogEvent, LogLevel
from .progress import ProgressState

LINE = "line"
SCRIPT = "script"
HEADER = "header"
FOOTER = "footer"

LEVEL_STYLES = {
    LogLevel.ERROR: "red",
    LogLevel.WARNING: "yellow",
    LogLevel.SUCCESS: "green",
    LogLevel.SCRIPT: "cyan",
    LogLevel.SCRIPT_SECTION: "cyan",
    LogLevel.INFO: "",
}

STATUS_STYLES = {
    "connected": "green",
    "disconnected": "dim",
    "error": "red",
    "complete": "bold green",
    "warning": "yellow",
}


@dataclass(frozen=True)
class LogLine:
    """One rendered entry of the log panel."""
    kind: str
    level: LogLevel
    text: str
    time: str

    def plain(self) -> str:
        if self.kind == SCRIPT:
            return f"> {self.text}"
        if self.kind in (HEADER, FOOTER):
            return self.text
        return f"[{self.time}] [{self.level.value}] {self.text}"


def format_log_line(event: LogEvent) -> LogLine | None:
    """Apply the log panel rules to an event; None means nothing is shown."""
    text = event.text
    if not text or not text.strip():
        return None
    time = event.timestamp.strftime("%H:%M:%S")

    if event.level is LogLevel.SCRIPT_SECTION and "======" in text:
        if "DÉBUT DU SCRIPT" in text:
            return LogLine(HEADER, event.level, text.replace("[INFO]", "").strip(), time)
        if "FIN DU SCRIPT" in text:
            return LogLine(FOOTER, event.level, text.replace("[INFO]", "").strip(), time)
        # plain separator
        return None

    if event.level is LogLevel.SCRIPT:
        return LogLine(SCRIPT, event.level, text.replace("[SCRIPT]", "").strip(), time)

    return LogLine(LINE, event.level, text, time)


class LogSink(Protocol):
    def write(self, line: LogLine) -> None: ...


class ProgressSink(Protocol):
    def show_progress(self, state: ProgressState) -> None: ...


class StatusSink(Protocol):
    def show_status(self, status: str) -> None: ...


class ConsoleLogSink:
    """Prints log lines to a rich console."""

    def __init__(self, console: Console):
        self.console = console

    def write(self, line: LogLine) -> None:
        style = LEVEL_STYLES.get(line.level, "")
        if line.kind in (HEADER, FOOTER):
            self.console.rule(f"[bold]{escape(line.text)}[/bold]", style="cyan")
            return
        body = escape(line.plain())
        self.console.print(f"[{style}]{body}[/{style}]" if style else body)


class ConsoleProgressSink:
    """Drives a rich progress bar; the bar turns red on error."""

    def __init__(self, progress: Progress, description: str = "Installation"):
        self.progress = progress
        self.description = description
        self.task: TaskID = progress.add_task(description, total=100)

    def show_progress(self, state: ProgressState) -> None:
        style = "red" if state.is_error else "blue"
        self.progress.update(
            self.task,
            completed=state.percent,
            description=f"[{style}]{self.description}[/{style}]",
        )


class ConsoleStatusSink:
    """Prints status changes, skipping repeats."""

    def __init__(self, console: Console):
        self.console = console
        self.current: str | None = None

    def show_status(self, status: str) -> None:
        if status == self.current:
            return
        self.current = status
        label, _ = STATUS_DISPLAY.get(status, STATUS_DISPLAY[STATUS_DISCONNECTED])
        style = STATUS_STYLES.get(status, "dim")
        self.console.print(f"[{style}]● {label}[/{style}]")


def make_progress(console: Console) -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )
