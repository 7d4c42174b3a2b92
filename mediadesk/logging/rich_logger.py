"""Terminal output: Rich log handler, batch progress bars and result tables."""
from __future__ import annotations

import logging
import sys
import time
from collections import deque
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
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
from rich.table import Table
from rich.text import Text

from ..core.models import (
    BatchOutcome,
    CompleteEvent,
    Person,
    ProgressEvent,
    PublishOutcome,
    SocialPlatform,
)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route library logging through Rich.

    Verbose shows DEBUG records, quiet only errors, otherwise warnings.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


class ItemsPerSecondColumn(ProgressColumn):
    """Throughput over the last ``window`` completed items.

    Slow remote providers make the run-wide average misleading, so the rate
    comes from recent completions only.
    """

    def __init__(self, window: int = 10):
        super().__init__()
        self._marks: deque[tuple[float, int]] = deque(maxlen=window)

    def _rate(self, completed: int, now: float) -> Optional[float]:
        if not self._marks or completed > self._marks[-1][1]:
            self._marks.append((now, completed))
        if len(self._marks) < 2:
            return None
        (first_at, first_done), (last_at, last_done) = self._marks[0], self._marks[-1]
        span = last_at - first_at
        return (last_done - first_done) / span if span > 0 else None

    def render(self, task: Task) -> Text:
        rate = self._rate(int(task.completed), time.monotonic())
        label = "-- it/s" if rate is None else f"{rate:.1f} it/s"
        return Text(label, style="magenta")


class RichProgressReporter:
    """Interactive terminal reporter and batch progress sink.

    One progress bar per batch run: opened by the first progress event
    carrying a new run id, closed by that run's complete event.
    """

    def __init__(
        self,
        verbose: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
    ):
        """
        Args:
            verbose: also print debug lines
            quiet: no bars, no info or success lines
            console: where to render; stderr when omitted
        """
        self._console = console or Console(stderr=True)
        self._verbose = verbose
        self._quiet = quiet
        self._progress: Optional[Progress] = None
        self._task_id: Optional[TaskID] = None
        self._run_id: Optional[str] = None
        self._title = "Processing"

    @property
    def console(self) -> Console:
        return self._console

    def set_title(self, title: str) -> None:
        """Description shown on the next progress bar."""
        self._title = title

    # progress sink

    def on_progress(self, event: ProgressEvent) -> None:
        if self._quiet:
            return
        if self._progress is None or self._run_id != event.run_id:
            self._start(event.run_id, event.total)
        self._progress.update(self._task_id, completed=event.processed)
        self.debug(f"{event.percentage}% {Path(event.current_item).name}")

    def on_complete(self, event: CompleteEvent) -> None:
        self._stop()
        if event.error:
            self.error(f"Run stopped after {event.processed}/{event.total} items: {event.error}")
        elif event.cancelled:
            self.warning(f"Run cancelled after {event.processed}/{event.total} items")
        else:
            self.success(f"Processed {event.processed}/{event.total} items")

    def _start(self, run_id: str, total: int) -> None:
        self._stop()
        self._run_id = run_id
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            TextColumn("[cyan]•"),
            ItemsPerSecondColumn(),
            TextColumn("[cyan]•"),
            TimeElapsedColumn(),
            TextColumn("[cyan]•"),
            TimeRemainingColumn(),
            console=self._console,
            transient=False,
        )
        self._progress.start()
        self._task_id = self._progress.add_task(self._title, total=total)

    def _stop(self) -> None:
        if self._progress:
            self._progress.stop()
            self._progress = None
            self._task_id = None
            self._run_id = None

    # messages

    def _say(self, marker: str, message: str, style: Optional[str] = None) -> None:
        self._console.print(f"{marker} {message}", style=style)

    def info(self, message: str) -> None:
        if not self._quiet:
            self._say("[blue]ℹ[/blue]", message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._say("[green]✓[/green]", message)

    def warning(self, message: str) -> None:
        self._say("[yellow]⚠[/yellow]", message)

    def error(self, message: str) -> None:
        self._say("[red]✗[/red]", message, style="red")

    def debug(self, message: str) -> None:
        """Shown with --verbose only."""
        if self._verbose:
            self._say(" ", message, style="dim")

    # tables

    def print_header(self, title: str) -> None:
        if not self._quiet:
            self._console.print(Panel(Text(title, style="bold cyan"), border_style="cyan"))

    def print_config(self, config_items: dict) -> None:
        """Effective settings, one row each."""
        if self._quiet:
            return
        table = Table(title="Settings", header_style="bold")
        table.add_column("Option", style="cyan")
        table.add_column("Value")
        for name in config_items:
            table.add_row(name, str(config_items[name]))
        self._console.print(table)

    def print_batch_summary(self, outcome: BatchOutcome, title: str = "Batch Complete") -> None:
        """Print counts and the failed items of a batch run."""
        if self._quiet and not outcome.failed:
            return

        table = Table(title=title, show_header=False)
        table.add_column("Outcome", style="cyan")
        table.add_column("Items", style="green", justify="right")
        for key, value in outcome.summary().items():
            table.add_row(key.capitalize(), str(value))
        if outcome.cancelled:
            table.add_row("Cancelled", "yes")
        if outcome.overall_failure:
            table.add_row("Stopped", outcome.overall_failure)
        self._console.print(table)

        for result in outcome.results:
            if not result.ok:
                self.warning(f"{result.item}: {result.error}")

    def print_persons(self, persons: list[Person]) -> None:
        table = Table(title="People", show_header=True, header_style="bold")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Faces", justify="right")
        table.add_column("Modified")
        for person in persons:
            table.add_row(
                person.id,
                person.name,
                str(person.face_count),
                person.modified_at.strftime("%Y-%m-%d %H:%M"),
            )
        self._console.print(table)

    def print_person(self, person: Person) -> None:
        """Print one person with all face samples."""
        self._console.print(f"[bold cyan]{person.name}[/bold cyan] [dim]({person.id})[/dim]")
        if not person.faces:
            self._console.print("  [dim]no faces[/dim]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("Face ID", style="dim")
        table.add_column("Image")
        table.add_column("Rect", justify="right")
        for face in person.faces:
            r = face.bounding_rect
            table.add_row(face.id, face.source_image, f"{r.x},{r.y} {r.width}x{r.height}")
        self._console.print(table)

    def print_platforms(self, platforms: list[SocialPlatform]) -> None:
        table = Table(title="Platforms", show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Connected")
        for platform in platforms:
            state = "[green]yes[/green]" if platform.connected else "[dim]no[/dim]"
            table.add_row(platform.id, platform.name, state)
        self._console.print(table)

    def print_publish_outcome(self, outcome: PublishOutcome) -> None:
        table = Table(title="Publish Results", show_header=True, header_style="bold")
        table.add_column("Platform", style="cyan")
        table.add_column("Result")
        table.add_column("Details")
        for result in outcome.results:
            if result.success:
                table.add_row(result.platform_id, "[green]✓[/green]", result.post_url or result.post_id or "")
            else:
                table.add_row(result.platform_id, "[red]✗[/red]", result.error or "")
        self._console.print(table)

    # lifecycle

    def __enter__(self) -> RichProgressReporter:
        return self

    def __exit__(self, *exc) -> None:
        self._stop()


class QuietProgressReporter:
    """Reporter for scripts: no bars, warnings and errors on stderr, plain tab-separated listings."""

    def on_progress(self, event: ProgressEvent) -> None:
        pass

    def on_complete(self, event: CompleteEvent) -> None:
        if event.error:
            self.error(f"Run stopped after {event.processed}/{event.total} items: {event.error}")

    def set_title(self, title: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def debug(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        sys.stderr.write(f"WARNING: {message}\n")

    def error(self, message: str) -> None:
        sys.stderr.write(f"ERROR: {message}\n")

    def print_header(self, title: str) -> None:
        pass

    def print_config(self, config_items: dict) -> None:
        pass

    def print_batch_summary(self, outcome: BatchOutcome, title: str = "Batch Complete") -> None:
        for result in outcome.results:
            if not result.ok:
                self.warning(f"{result.item}: {result.error}")

    def print_persons(self, persons: list[Person]) -> None:
        for person in persons:
            print(f"{person.id}\t{person.name}\t{person.face_count}")

    def print_person(self, person: Person) -> None:
        print(f"{person.id}\t{person.name}")
        for face in person.faces:
            print(f"  {face.id}\t{face.source_image}")

    def print_platforms(self, platforms: list[SocialPlatform]) -> None:
        for platform in platforms:
            print(f"{platform.id}\t{'connected' if platform.connected else 'disconnected'}")

    def print_publish_outcome(self, outcome: PublishOutcome) -> None:
        for result in outcome.results:
            if not result.success:
                self.error(f"{result.platform_id}: {result.error}")

    def __enter__(self) -> QuietProgressReporter:
        return self

    def __exit__(self, *exc) -> None:
        pass
