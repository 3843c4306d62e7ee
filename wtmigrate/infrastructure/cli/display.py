import logging
from typing import Any, List, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from wtmigrate.domain.interfaces.user_interface import UserInterface
from wtmigrate.domain.models.analysis import AnalysisResult, MigrationResult, MigrationStatus
from wtmigrate.domain.models.common import ModuleSpec
from wtmigrate.domain.models.webtask import WebtaskRecord

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    MigrationStatus.MIGRATED: "green",
    MigrationStatus.DRY_RUN: "cyan",
    MigrationStatus.NOT_FOUND: "yellow",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Console = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: str, **kwargs: Any) -> None:
        title = kwargs.get("title")
        if title:
            self.console.print(Panel(Text(str(output)), title=f"[bold]{title}[/bold]", box=ROUNDED, padding=(0, 1)))
        else:
            self.console.print(str(output))

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_webtasks(self, records: Sequence[WebtaskRecord]) -> None:
        if not records:
            self.display_info("No webtasks found.")
            return

        table = Table(title=f"Webtasks ({len(records)})", box=ROUNDED)
        table.add_column("Container", style="cyan")
        table.add_column("Webtask", style="white")
        for record in sorted(records, key=lambda r: (r.tenant_name or "", r.webtask_name or "")):
            table.add_row(record.tenant_name, record.webtask_name)
        self.console.print(table)

    def display_analysis(self, analysis: AnalysisResult, **kwargs: Any) -> None:
        title = kwargs.get("title", "Analysis")
        if analysis.dependencies:
            table = Table(title=f"{title}: dependencies", box=ROUNDED)
            table.add_column("Module", style="cyan")
            table.add_column("Version", style="green")
            for module in analysis.dependencies:
                table.add_row(module["name"], module["version"])
            self.console.print(table)
        else:
            self.display_info("No module dependencies detected.")

        for warning in analysis.warnings:
            location = f" [{warning.code_type}]" if warning.code_type else ""
            self.display_warning(f"{warning.warning_type.value}{location}: {warning.message}")

    def display_provision_summary(
        self, available: List[ModuleSpec], failed: List[ModuleSpec], queued: List[ModuleSpec]
    ) -> None:
        table = Table(title="Provisioned modules", box=ROUNDED)
        table.add_column("Module", style="cyan")
        table.add_column("Version")
        table.add_column("State")
        for modules, state, style in (
            (available, "available", "green"),
            (failed, "failed", "red"),
            (queued, "queued", "yellow"),
        ):
            for module in modules:
                table.add_row(module["name"], module["version"], f"[{style}]{state}[/{style}]")
        self.console.print(table)
        self.console.print(
            f"[green]{len(available)} available[/green], [red]{len(failed)} failed[/red], "
            f"[yellow]{len(queued)} still queued[/yellow]"
        )

    def display_migration_results(self, results: Sequence[MigrationResult]) -> None:
        table = Table(title="Migration", box=ROUNDED)
        table.add_column("Container", style="cyan")
        table.add_column("Webtask")
        table.add_column("Status")
        table.add_column("Warnings", justify="right")
        table.add_column("Message")
        for result in results:
            style = _STATUS_STYLES.get(result.status, "white")
            table.add_row(
                result.tenant,
                result.webtask,
                f"[{style}]{result.status.value}[/{style}]",
                str(len(result.warnings)),
                result.message,
            )
        self.console.print(table)
