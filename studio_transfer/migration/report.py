"""
Transfer Reports
================

Per-item outcome summaries for migrations and batch transfers, with JSON
export and console rendering.

JSON layout (``transfer_report_<projectId>.json``):

    {
      "project": "...",
      "timestamp": "2024-01-01T00:00:00",
      "summary": {"total": 3, "migrated": 2, "skipped": 1, "failed": 0, "errors": [...]},
      "details": [{"id": "...", "container_id": "...", "status": "migrated"}, ...]
    }
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..utils import format_duration
from .models import MigrationPlan, MigrationResult, TransferResult, TransferStatus, PLAN_SECTIONS

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    TransferStatus.MIGRATED: "green",
    TransferStatus.SKIPPED: "yellow",
    TransferStatus.FAILED: "red bold",
}


@dataclass
class TransferReport:
    """Outcome of a batch transfer (or the streams of a migration)."""

    project: str
    project_id: str
    results: List[TransferResult] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def add(self, result: TransferResult) -> None:
        self.results.append(result)

    def extend(self, results: List[TransferResult]) -> None:
        self.results.extend(results)

    def count(self, status: TransferStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def errors(self) -> List[TransferResult]:
        return [r for r in self.results if r.status == TransferStatus.FAILED]

    @property
    def passed(self) -> bool:
        return not self.errors

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "migrated": self.count(TransferStatus.MIGRATED),
            "skipped": self.count(TransferStatus.SKIPPED),
            "failed": self.count(TransferStatus.FAILED),
            "errors": [r.to_dict() for r in self.errors],
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "project": self.project,
            "timestamp": self.timestamp,
            "summary": self.summary,
            "details": [r.to_dict() for r in self.results],
        }

    @property
    def filename(self) -> str:
        return f"transfer_report_{self.project_id}.json"

    def save(self, directory: Optional[Path] = None) -> Path:
        """Write the report as JSON into directory (cwd by default)."""
        path = Path(directory or Path.cwd()) / self.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Transfer report written to {path}")
        return path

    def render(self, console: Optional[Console] = None, show_details: bool = False) -> None:
        """Print the summary (and optionally every item) to the console."""
        console = console or Console()
        summary = self.summary
        console.print(
            f"[bold]Transfer report[/bold] for {self.project} "
            f"[dim]({self.timestamp})[/dim]"
        )
        console.print(
            f"  Total: {summary['total']}  "
            f"[green]Migrated: {summary['migrated']}[/green]  "
            f"[yellow]Skipped: {summary['skipped']}[/yellow]  "
            f"[red]Failed: {summary['failed']}[/red]"
        )

        rows = self.results if show_details else self.errors
        if not rows:
            return
        console.print(render_results_table(rows, title="Details" if show_details else "Errors"))


def render_results_table(results: List[TransferResult], title: str = "Results") -> Table:
    table = Table(title=title, show_header=True, header_style="bold", expand=False)
    table.add_column("ID", style="white", overflow="ellipsis", max_width=36)
    table.add_column("Container", style="cyan", max_width=36)
    table.add_column("Status", width=9)
    table.add_column("Error", style="dim", overflow="fold")
    for r in results:
        table.add_row(r.id, r.container_id, Text(r.status.value, style=STATUS_STYLES[r.status]), r.error or "")
    return table


def render_plan(plan: MigrationPlan, console: Optional[Console] = None) -> None:
    """Print the plan as one table per section."""
    console = console or Console()
    for section in PLAN_SECTIONS:
        resources = getattr(plan, section)
        if not resources:
            continue
        table = Table(title=section.capitalize(), show_header=True, header_style="bold", box=None, padding=(0, 1))
        table.add_column("", width=3)
        table.add_column("Source ID", style="cyan")
        table.add_column("Source name")
        table.add_column("Target ID", style="green")
        table.add_column("Target name")
        for resource in resources:
            for node in resource.iter_tree():
                indent = "  " if node is not resource else ""
                mark = Text("✓", style="green") if node.enabled else Text("✗", style="dim")
                table.add_row(
                    mark, indent + node.source_id, node.source_name, node.target_id, node.target_name,
                )
        console.print(table)

    options = ", ".join(k for k, v in plan.options.to_dict().items() if v)
    console.print(f"[dim]Options: {options or 'none'}[/dim]")


def render_migration_result(result: MigrationResult, console: Optional[Console] = None) -> None:
    """Print per-phase counters of a migration run."""
    console = console or Console()
    style = {"completed": "green", "stopped": "yellow"}.get(result.status.value, "red")
    console.print(
        f"[{style} bold]{result.status.value.upper()}[/{style} bold] {result.message} "
        f"[dim]({format_duration(result.duration_seconds)})[/dim]"
    )

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Phase")
    table.add_column("Migrated", style="green", justify="right")
    table.add_column("Skipped", style="yellow", justify="right")
    table.add_column("Failed", style="red", justify="right")
    for name, stats in result.phases.items():
        if stats.total:
            table.add_row(name, str(stats.migrated), str(stats.skipped), str(stats.failed))
    if table.row_count:
        console.print(table)

    if result.failures:
        console.print(render_results_table(result.failures, title="Failed items"))
