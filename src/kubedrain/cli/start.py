# src/kubedrain/cli/start.py
"""
Start command for the KubeDrain CLI.

Runs drains periodically until SIGTERM/SIGINT, reusing one processor so the
per-node locks are shared between overlapping runs.
"""

import asyncio
import logging
import signal
from typing import Optional

import typer
from typing_extensions import Annotated

from ..core.config import config
from ..core.exceptions import KubeDrainError
from ..core.factory import get_processor
from ..core.scheduler import Scheduler, parse_interval

logger = logging.getLogger(__name__)

app = typer.Typer(name="start", help="Start the periodic drain service.")


async def run_service(interval: str, dry_run: bool) -> None:
    processor = await get_processor(config)
    scheduler = Scheduler()

    async def drain_job():
        try:
            report = await processor.run_drain(dry_run=dry_run)
        except KubeDrainError as e:
            logger.error(f"Scheduled drain run aborted: {e}")
            return
        for outcome in report.outcomes:
            logger.info(
                "Node %s finished as %s%s",
                outcome.node_name,
                outcome.final_state.value,
                f" ({outcome.reason.value}: {outcome.error})" if outcome.reason else "",
            )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _request_shutdown(sig_name: str):
        logger.info(f"\n🛑 Received {sig_name}, initiating graceful shutdown...")
        stop.set()

    loop.add_signal_handler(signal.SIGTERM, _request_shutdown, "SIGTERM")
    loop.add_signal_handler(signal.SIGINT, _request_shutdown, "SIGINT")

    try:
        scheduler.add_job_from_string(drain_job, interval)
        logger.info("\nKubeDrain is running. Press CTRL+C to exit.")
        await stop.wait()
    finally:
        await scheduler.stop()
        await processor.close()
        logger.info("🛑 Shutting down KubeDrain service gracefully.")


@app.callback(invoke_without_command=True)
def start(
    ctx: typer.Context,
    interval: Annotated[
        Optional[str],
        typer.Option("--interval", help="Time between drain runs (e.g. '30s', '10m', '1h')."),
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Only report candidates on each run.")] = False,
) -> None:
    """
    Run drains on a fixed interval.
    """
    if ctx.invoked_subcommand is not None:
        return

    interval = interval or config.DRAIN_INTERVAL
    try:
        parse_interval(interval)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    logger.info("🚀 Initializing KubeDrain...")
    try:
        asyncio.run(run_service(interval, dry_run))
    except KeyboardInterrupt:
        logger.info("\n🛑 Shutting down KubeDrain service.")
        raise typer.Exit()
    except KubeDrainError as e:
        logger.error(f"❌ Startup failed: {e}")
        raise typer.Exit(code=1)
