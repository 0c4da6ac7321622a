# src/kubedrain/cli/drain.py
"""
Implements the `drain`, `usage` and `evicted-pods` commands of the KubeDrain CLI.
"""

import asyncio
import logging
from typing import Optional

import typer
from typing_extensions import Annotated

from ..core.config import SUPPORTED_RESOURCES, config
from ..core.exceptions import KubeDrainError
from ..core.factory import get_processor
from ..models.drain import DrainReport
from ..reporters.console_reporter import ConsoleReporter

logger = logging.getLogger(__name__)

drain_app = typer.Typer(name="drain", help="Select nodes from metrics and drain them.", add_completion=False)
usage_app = typer.Typer(name="usage", help="Show node utilization above/below a threshold.", add_completion=False)
evicted_app = typer.Typer(name="evicted-pods", help="Delete leftover evicted pods.", add_completion=False)

PercentageOption = Annotated[
    Optional[float],
    typer.Option("--percentage", "-p", min=0, max=100, help="Utilization threshold in percent."),
]
ResourceOption = Annotated[
    Optional[str],
    typer.Option("--resource", "-r", help=f"Resource to query: {', '.join(SUPPORTED_RESOURCES)}."),
]


def _check_resource(resource: Optional[str]) -> Optional[str]:
    if resource is not None and resource.lower() not in SUPPORTED_RESOURCES:
        raise typer.BadParameter(f"Unsupported resource '{resource}'. Use one of: {', '.join(SUPPORTED_RESOURCES)}.")
    return resource


async def run_drain(threshold: Optional[float], dry_run: bool, resource: Optional[str]) -> DrainReport:
    processor = await get_processor(config)
    try:
        return await processor.run_drain(threshold=threshold, dry_run=dry_run, resource=resource)
    finally:
        await processor.close()


@drain_app.callback(invoke_without_command=True)
def drain(
    percentage: PercentageOption = None,
    resource: ResourceOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Only report the candidates; do not cordon, evict or terminate."),
    ] = False,
) -> None:
    """
    Query Prometheus, select candidate nodes and drain them.
    """
    _check_resource(resource)
    try:
        report = asyncio.run(run_drain(percentage, dry_run, resource))
    except KubeDrainError as e:
        logger.error(f"Drain run aborted before any node was touched: {e}")
        raise typer.Exit(code=1)

    ConsoleReporter().report(report)
    if report.failed:
        raise typer.Exit(code=1)


async def _usage(threshold: Optional[float], resource: Optional[str]):
    processor = await get_processor(config)
    try:
        return await processor.usage(threshold=threshold, resource=resource)
    finally:
        await processor.close()


@usage_app.callback(invoke_without_command=True)
def usage(
    percentage: PercentageOption = None,
    resource: ResourceOption = None,
) -> None:
    """
    Show the nodes whose utilization matches the threshold.
    """
    _check_resource(resource)
    threshold = config.DRAIN_THRESHOLD_PERCENTAGE if percentage is None else percentage
    try:
        samples = asyncio.run(_usage(threshold, resource))
    except KubeDrainError as e:
        logger.error(f"Usage query failed: {e}")
        raise typer.Exit(code=1)

    ConsoleReporter().report_samples(samples, resource or config.DRAIN_RESOURCE, threshold)


async def _cleanup():
    processor = await get_processor(config)
    try:
        return await processor.cleanup_evicted_pods()
    finally:
        await processor.close()


@evicted_app.callback(invoke_without_command=True)
def evicted_pods() -> None:
    """
    Delete pods left behind in the Evicted state outside the critical namespaces.
    """
    try:
        deleted = asyncio.run(_cleanup())
    except KubeDrainError as e:
        logger.error(f"Evicted pod cleanup failed: {e}")
        raise typer.Exit(code=1)

    if not deleted:
        typer.echo("No evicted pods to delete.")
        return
    for name in deleted:
        typer.echo(name)
