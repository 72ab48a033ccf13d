"""
Progress reporting for sessions.

Collects session events, keeps running stats, and prints them to a rich
console. Callbacks registered with on_progress() get every event, which is how
tests observe a session without scraping console output.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional

from rich.console import Console
from rich.table import Table

logger = logging.getLogger(__name__)

BAR_WIDTH = 30

EVENT_TYPES = (
    "start",
    "story_start",
    "story_complete",
    "story_blocked",
    "iteration",
    "error",
    "complete",
    "checkpoint",
)


@dataclass
class ProgressEvent:
    type: str
    timestamp: datetime
    message: str
    details: dict = field(default_factory=dict)


@dataclass
class ProgressStats:
    total_stories: int
    completed_stories: int = 0
    blocked_stories: int = 0
    total_iterations: int = 0
    elapsed_minutes: float = 0.0
    estimated_remaining_minutes: Optional[float] = None


ProgressCallback = Callable[[ProgressEvent, ProgressStats], None]


class ProgressReporter:
    def __init__(self, total_stories: int, console: Console | None = None,
                 log_to_console: bool = True, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self.start_time = clock()
        self.stats = ProgressStats(total_stories=total_stories)
        self.events: list[ProgressEvent] = []
        self.console = console or Console()
        self.log_to_console = log_to_console
        self._callbacks: list[ProgressCallback] = []

    def on_progress(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    def _emit(self, type_: str, message: str, **details) -> None:
        event = ProgressEvent(type=type_, timestamp=self._clock(), message=message, details=details)
        self.events.append(event)
        self._refresh_stats()

        for cb in self._callbacks:
            try:
                cb(event, replace(self.stats))
            except Exception:
                logger.exception(f"Progress callback failed on {type_} event")

        if self.log_to_console:
            self._print_event(event)

    def _refresh_stats(self) -> None:
        s = self.stats
        s.elapsed_minutes = (self._clock() - self.start_time).total_seconds() / 60
        if s.completed_stories > 0:
            per_story = s.elapsed_minutes / s.completed_stories
            remaining = s.total_stories - s.completed_stories - s.blocked_stories
            s.estimated_remaining_minutes = per_story * max(remaining, 0)

    def _print_event(self, event: ProgressEvent) -> None:
        c = self.console
        if event.type == "start":
            c.print(f"\n[bold blue]🚀 {event.message}[/bold blue]")
            c.print(f"[dim]{self.render_progress_bar()}[/dim]")
        elif event.type == "story_start":
            c.print(f"\n[cyan]📋 {event.message}[/cyan]")
        elif event.type == "story_complete":
            c.print(f"[green]✓ {event.message}[/green]")
            c.print(f"[dim]{self.render_progress_bar()}[/dim]")
        elif event.type == "story_blocked":
            c.print(f"[yellow]🚫 {event.message}[/yellow]")
        elif event.type == "iteration":
            c.print(f"[dim]   ↻ {event.message}[/dim]")
        elif event.type == "error":
            c.print(f"[red]✗ {event.message}[/red]")
        elif event.type == "complete":
            c.print(f"\n[bold green]✅ {event.message}[/bold green]" if event.details.get("success")
                    else f"\n[bold yellow]⚠️  {event.message}[/bold yellow]")
        elif event.type == "checkpoint":
            c.print(f"[dim]   💾 {event.message}[/dim]")

    def render_progress_bar(self) -> str:
        """Plain-text bar: completed, blocked, then remaining."""
        s = self.stats
        total = max(s.total_stories, 1)
        done_width = round(s.completed_stories / total * BAR_WIDTH)
        blocked_width = min(round(s.blocked_stories / total * BAR_WIDTH), BAR_WIDTH - done_width)
        rest_width = BAR_WIDTH - done_width - blocked_width
        bar = "█" * done_width + "▓" * blocked_width + "░" * rest_width
        percent = round(s.completed_stories / total * 100)
        eta = f" ETA: {s.estimated_remaining_minutes:.0f}m" if s.estimated_remaining_minutes else ""
        return f"[{bar}] {percent}% ({s.completed_stories}/{s.total_stories}){eta}"

    # --- events ---

    def session_start(self, feature_title: str) -> None:
        self._emit("start", f'Starting session: "{feature_title}"', feature=feature_title)

    def story_start(self, story_id: str, story_title: str) -> None:
        self._emit("story_start", f'Story {story_id}: "{story_title}"',
                   story_id=story_id, story_title=story_title)

    def story_complete(self, story_id: str, commits: int, iterations: int) -> None:
        self.stats.completed_stories += 1
        self.stats.total_iterations += iterations
        plural = "s" if iterations != 1 else ""
        self._emit("story_complete",
                   f"Story {story_id} complete ({commits} commits, {iterations} iteration{plural})",
                   story_id=story_id, commits=commits, iterations=iterations)

    def story_blocked(self, story_id: str, reason: str, iterations: int = 0) -> None:
        self.stats.blocked_stories += 1
        self.stats.total_iterations += iterations
        self._emit("story_blocked", f"Story {story_id} blocked: {reason}",
                   story_id=story_id, reason=reason)

    def iteration(self, story_id: str, iteration: int, reason: str) -> None:
        self._emit("iteration", f"Iteration {iteration}: {reason}",
                   story_id=story_id, iteration=iteration, reason=reason)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        self._emit("error", message, error=str(exc) if exc else None)

    def session_complete(self, success: bool) -> None:
        message = "Session completed successfully!" if success else "Session ended with issues"
        self._emit("complete", message, success=success)

    def checkpoint(self, feature_id: str) -> None:
        self._emit("checkpoint", f"Checkpoint saved for {feature_id}", feature_id=feature_id)

    # --- reporting ---

    def sync_counts(self, completed: int, blocked: int, iterations: int,
                    total_stories: int | None = None) -> None:
        """Overwrite the running counters with authoritative totals."""
        s = self.stats
        s.completed_stories = completed
        s.blocked_stories = blocked
        s.total_iterations = iterations
        if total_stories is not None:
            s.total_stories = total_stories

    def get_stats(self) -> ProgressStats:
        self._refresh_stats()
        return replace(self.stats)

    def format_log(self) -> str:
        return "\n".join(
            f"[{e.timestamp.strftime('%H:%M:%S')}] {e.type}: {e.message}" for e in self.events
        )

    def summary_table(self, extra_rows: list[tuple[str, str]] | None = None) -> Table:
        s = self.get_stats()
        table = Table(title="📊 Session Summary", show_header=False, title_justify="left")
        table.add_column("Metric", style="bold")
        table.add_column("Value")
        table.add_row("Duration", f"{s.elapsed_minutes:.1f} minutes")
        table.add_row("Stories", f"{s.completed_stories}/{s.total_stories} completed, "
                                 f"{s.blocked_stories} blocked")
        table.add_row("Iterations", str(s.total_iterations))
        if s.completed_stories > 0:
            table.add_row("Avg time/story", f"{s.elapsed_minutes / s.completed_stories:.1f} minutes")
        for label, value in extra_rows or []:
            table.add_row(label, value)
        return table
