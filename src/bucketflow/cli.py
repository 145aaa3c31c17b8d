# src/bucketflow/cli.py
"""Command-line interface for the bucketflow tool."""

import asyncio
import json
import logging
import sys
from typing import Any, Callable, Coroutine, List

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from bucketflow.config import Config, S3Config, TransferConfig
from bucketflow.exceptions import BucketflowError, TransferCancelled
from bucketflow.models import TransferObject
from bucketflow.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _run(main: Callable[[asyncio.Event], Coroutine[Any, Any, None]]) -> None:
    """Run a coroutine under signal-driven cancellation and map errors to exit codes."""

    async def _with_shutdown() -> None:
        async with GracefulShutdown() as shutdown_event:
            await main(shutdown_event)

    try:
        asyncio.run(_with_shutdown())
    except TransferCancelled as e:
        logger.warning(f"Cancelled: {e}")
        sys.exit(130)
    except BucketflowError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.warning("Shutdown signal received. Exiting.")
        sys.exit(130)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)


def _print_objects(objects: List[TransferObject], as_json: bool) -> None:
    if as_json:
        for obj in objects:
            click.echo(json.dumps(obj.to_dict(), default=str))
        return
    table: Table = Table("Key", "Size", "Last modified", "ETag", "Content type")
    for obj in objects:
        table.add_row(
            obj.key,
            str(obj.content_length) if obj.content_length is not None else "",
            obj.last_modified.isoformat() if obj.last_modified else "",
            obj.e_tag or "",
            obj.content_type or "",
        )
    Console().print(table)


def _transfer_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that talks to a store."""
    options = [
        click.option("--prefix", default="", help="Only consider keys under this prefix."),
        click.option(
            "--keys-per-request",
            type=click.IntRange(min=1, max=1000),
            default=1000,
            help="Listing page size.",
            show_default=True,
        ),
        click.option(
            "--retry-count",
            type=click.IntRange(min=0),
            default=3,
            help="Retries per request after the first attempt.",
            show_default=True,
        ),
        click.option(
            "--retry-interval",
            type=click.FloatRange(min=0),
            default=3.0,
            help="Seconds to wait between attempts.",
            show_default=True,
        ),
        click.option(
            "--bandwidth-limit",
            type=click.IntRange(min=0),
            default=0,
            help="Aggregate bytes per second for object bodies (0 = unlimited).",
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _transfer_config(kwargs: Any, **extra: Any) -> TransferConfig:
    return TransferConfig(
        prefix=kwargs["prefix"],
        keys_per_request=kwargs["keys_per_request"],
        retry_count=kwargs["retry_count"],
        retry_interval_s=kwargs["retry_interval"],
        bandwidth_limit=kwargs["bandwidth_limit"],
        **extra,
    )


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(log_level: str) -> None:
    """
    List, read and mirror objects of S3-compatible stores.

    Every request is retried a bounded number of times with a fixed delay,
    and object bodies are throttled to the configured bandwidth.

    Endpoints and credentials must be set via environment variables
    (BUCKETFLOW_SOURCE_* and, for mirroring, BUCKETFLOW_DESTINATION_*).
    A .env file in the working directory is loaded automatically.
    """
    load_dotenv()
    setup_logging(log_level)


@cli.command("list")
@_transfer_options
@click.option("--meta", is_flag=True, default=False, help="Fetch metadata of each object.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON lines.")
def list_command(**kwargs: Any) -> None:
    """List the objects of the source bucket."""
    # Lazily import to keep CLI startup fast
    from bucketflow.client import open_transfer_client

    async def main(shutdown_event: asyncio.Event) -> None:
        config: Config = Config(transfer=_transfer_config(kwargs))
        async with open_transfer_client(
            config.source, config.transfer, shutdown_event
        ) as client:
            objects: List[TransferObject] = await client.list()
            if kwargs["meta"]:
                for obj in objects:
                    await client.get_object_meta(obj)
        _print_objects(objects, kwargs["as_json"])

    _run(main)


@cli.command("mirror")
@_transfer_options
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=8,
    help="Number of concurrent copy workers.",
    show_default=True,
)
@click.option("--no-verify", is_flag=True, default=False, help="Skip destination checks.")
@click.option("--copy-acl", is_flag=True, default=False, help="Copy object ACLs too.")
def mirror_command(**kwargs: Any) -> None:
    """Copy every object of the source bucket into the destination bucket."""
    from bucketflow.client import open_transfer_client
    from bucketflow.mirror import BucketMirror, MirrorReport
    from bucketflow.ratelimit import RateLimiter, create_rate_limiter

    async def main(shutdown_event: asyncio.Event) -> None:
        transfer: TransferConfig = _transfer_config(
            kwargs,
            workers=kwargs["workers"],
            verify=not kwargs["no_verify"],
            copy_acl=kwargs["copy_acl"],
        )
        config: Config = Config.with_destination(transfer)
        destination: S3Config = config.destination
        # Reads and writes draw from one bandwidth budget
        limiter: RateLimiter = create_rate_limiter(transfer.bandwidth_limit, transfer.burst)
        async with (
            open_transfer_client(
                config.source, transfer, shutdown_event, rate_limiter=limiter
            ) as source,
            open_transfer_client(
                destination, transfer, shutdown_event, rate_limiter=limiter
            ) as dest,
        ):
            mirror: BucketMirror = BucketMirror(
                source,
                dest,
                shutdown_event,
                workers=transfer.workers,
                queue_size=transfer.queue_size,
                verify=transfer.verify,
                copy_acl=transfer.copy_acl,
            )
            report: MirrorReport = await mirror.run()
        if report.cancelled:
            raise TransferCancelled(
                f"Mirror interrupted: {report.copied} of {report.listed} "
                f"listed object(s) copied."
            )
        if report.failed:
            raise BucketflowError(
                f"{report.failed} object(s) failed to copy: "
                f"{', '.join(report.failed_keys[:10])}"
            )
        logger.info(f"✅ Mirrored {report.copied} object(s).")

    _run(main)


if __name__ == "__main__":
    cli()
