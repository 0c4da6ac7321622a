# src/kubedrain/reporters/console_reporter.py
"""
A reporter that displays drain runs in formatted tables in the console.
"""

import logging
from typing import List

from rich.console import Console
from rich.table import Table

from ..models.drain import DrainReport, DrainState
from ..models.metrics import UtilizationSample

logger = logging.getLogger(__name__)

STATE_STYLES = {
    DrainState.TERMINATED: "green",
    DrainState.DRAINED: "yellow",
    DrainState.FAILED: "bold red",
}


class ConsoleReporter:
    """
    Renders drain data to the console using the 'rich' library.
    """

    def __init__(self, console: Console = None):
        self.console = console or Console()

    def report_samples(self, samples: List[UtilizationSample], resource: str, threshold: float):
        if not samples:
            self.console.print("No nodes matched the threshold.", style="yellow")
            return

        table = Table(
            title=f"Node {resource} usage (threshold {threshold:g}%)",
            header_style="bold magenta",
        )
        table.add_column("Node", style="cyan")
        table.add_column("Usage (%)", style="green", justify="right")
        for sample in samples:
            table.add_row(sample.node_identity, f"{sample.value:.2f}")
        self.console.print(table)

    def report(self, report: DrainReport):
        """
        Displays the candidates of a run and, when the run drained nodes, the
        per-node outcomes.
        """
        if not report.candidates:
            self.console.print("No drain candidates.", style="yellow")
            return

        table = Table(
            title="Drain candidates (dry run)" if report.dry_run else "Drain candidates",
            header_style="bold magenta",
            show_lines=True,
        )
        table.add_column("Node", style="cyan")
        table.add_column("Pool", style="cyan")
        table.add_column("Instance Type", style="dim")
        table.add_column(f"{report.resource.capitalize()} (%)", style="green", justify="right")
        table.add_column("Cordoned", style="yellow")
        for candidate in report.candidates:
            table.add_row(
                candidate.node_name,
                candidate.pool_label,
                candidate.instance_type or "",
                f"{candidate.utilization:.2f}",
                "yes" if candidate.unschedulable else "",
            )
        self.console.print(table)

        if report.dry_run or not report.outcomes:
            return

        outcomes = Table(title="Drain outcomes", header_style="bold magenta", show_lines=True)
        outcomes.add_column("Node", style="cyan")
        outcomes.add_column("State")
        outcomes.add_column("Instance", style="dim")
        outcomes.add_column("Deleted Pods", justify="right")
        outcomes.add_column("Error", style="red")
        for outcome in report.outcomes:
            style = STATE_STYLES.get(outcome.final_state, "")
            state = outcome.final_state.value
            if outcome.reason:
                state = f"{state} ({outcome.reason.value})"
            outcomes.add_row(
                outcome.node_name,
                f"[{style}]{state}[/{style}]" if style else state,
                outcome.instance_id or "",
                str(outcome.deleted_pods),
                outcome.error or "",
            )
        self.console.print(outcomes)
