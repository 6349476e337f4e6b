"""CLI for the conversion worker."""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn

from .config import Settings
from .factory import (
    create_file_processing_worker, create_file_storage, create_job_store, create_message_queue
)
from .services.job_submitter import JobSubmitter
from .services.queue_worker import QueueWorker


def _configure_logging(level_name: str, verbose: bool):
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def run_worker(worker: QueueWorker):
    """Run the worker until SIGINT or SIGTERM"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.start()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if worker.job_store is not None:
            await worker.job_store.close()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Queue-driven file conversion and compression worker."""
    settings = Settings()
    _configure_logging(settings.log_level, verbose)
    ctx.obj = settings


@cli.command()
@click.option("--poll-interval", type=float, default=None, help="Seconds between empty polls")
@click.pass_obj
def run(settings: Settings, poll_interval: Optional[float]):
    """Poll the configured queue and process jobs until interrupted."""
    if poll_interval is not None:
        settings.poll_interval_seconds = poll_interval

    worker = create_file_processing_worker(settings)
    asyncio.run(run_worker(worker))


@cli.command()
@click.option("-h", "--host", default="0.0.0.0", help="Bind host")
@click.option("-p", "--port", type=int, default=None, help="Bind port (defaults to PORT)")
@click.pass_obj
def serve(settings: Settings, host: str, port: Optional[int]):
    """Run the worker inside the HTTP host (health and worker status endpoints)."""
    uvicorn.run(
        "conversion_worker.main:app",
        host=host,
        port=port or settings.port,
        log_level=settings.log_level.lower()
    )


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--operation", type=click.Choice(["convert", "compress"]), default="convert")
@click.option("-t", "--target-format", default=None, help="Output format (required for convert)")
@click.option("-q", "--quality", type=click.IntRange(0, 100), default=None)
@click.option("--width", type=int, default=None, help="Maximum output width (images)")
@click.option("--height", type=int, default=None, help="Maximum output height (images)")
@click.pass_obj
def submit(
    settings: Settings,
    file_path: Path,
    operation: str,
    target_format: Optional[str],
    quality: Optional[int],
    width: Optional[int],
    height: Optional[int]
):
    """
    Upload FILE_PATH and enqueue a job for it.

    Uses the configured queue, storage and job store, so it only reaches a
    worker in another process with the sqs/s3/datastore backends.
    """
    if operation == "convert" and not target_format:
        raise click.UsageError("--target-format is required for convert jobs")

    options = {key: value for key, value in (("width", width), ("height", height)) if value}

    async def _submit():
        job_store = create_job_store(settings)
        submitter = JobSubmitter(
            create_message_queue(settings),
            create_file_storage(settings),
            job_store
        )
        try:
            return await submitter.submit(
                file_path.read_bytes(),
                file_path.name,
                operation,
                target_format=target_format,
                quality=quality,
                options=options
            )
        finally:
            await job_store.close()

    descriptor = asyncio.run(_submit())
    click.echo(json.dumps({"jobId": descriptor.job_id, "targetFormat": descriptor.target_format}))


def main():
    cli()


if __name__ == "__main__":
    main()
