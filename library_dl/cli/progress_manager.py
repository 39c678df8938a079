"""
Manages a Rich progress display for a library download run.
"""

import time

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.text import Text


class FileRateColumn(ProgressColumn):
    """Renders the document throughput of a task in files per second."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("-- files/s", style="progress.data.speed")
        return Text(f"{speed:.1f} files/s", style="progress.data.speed")


class ProgressManager:
    """
    Drives one overall progress bar from the orchestrator's
    ``(current, total)`` callback and prints run messages above it.
    """

    def __init__(self, console: Console, show_messages: bool = False):
        self.console = console
        self.show_messages = show_messages
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            MofNCompleteColumn(),
            "•",
            FileRateColumn(),
            "•",
            TimeElapsedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._task_id: TaskID | None = None
        self._start_time: float | None = None

    @property
    def elapsed(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    def update(self, current: int, total: int) -> None:
        """Progress callback for the orchestrator."""
        if self._task_id is None:
            self._task_id = self.progress.add_task("Documents", total=total)
        self.progress.update(self._task_id, completed=current, total=total)

    def log_message(self, message: str) -> None:
        """Log callback for the orchestrator."""
        if self.show_messages:
            self.progress.console.print(f"[dim]{escape(message)}[/dim]", highlight=False)

    def __enter__(self):
        self._start_time = time.monotonic()
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()
        return False
